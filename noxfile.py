"""nox build configuration for podrefresh."""

import nox

# Default sessions
nox.options.sessions = ["typing", "test", "coverage-report"]

# Other nox defaults
nox.options.reuse_existing_virtualenvs = True


@nox.session(name="coverage-report", requires=["test"])
def coverage_report(session: nox.Session) -> None:
    """Generate a code coverage report from the test suite."""
    session.install("-e", ".[dev]")
    session.run("coverage", "report", *session.posargs)


@nox.session
def test(session: nox.Session) -> None:
    """Run tests."""
    session.install("-e", ".[dev]")
    session.run(
        "pytest",
        "--cov=podrefresh",
        "--cov-branch",
        "--cov-report=",
        *session.posargs,
    )


@nox.session
def typing(session: nox.Session) -> None:
    """Run mypy."""
    session.install("-e", ".[dev]", "nox")
    session.run(
        "mypy",
        *session.posargs,
        "--namespace-packages",
        "--explicit-package-bases",
        "noxfile.py",
        "src",
        "tests",
    )
