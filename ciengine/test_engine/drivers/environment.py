"""Environment verification for the preparation stage."""

import logging
import os
import shutil
from collections.abc import Mapping, Sequence

from ciengine.test_engine.cancellation import CancellationToken
from ciengine.test_engine.drivers.base import BuildVerifier
from ciengine.test_engine.models.drivers import CheckResult

logger = logging.getLogger(__name__)


class EnvironmentVerifier(BuildVerifier):
    """Checks required commands and environment variables."""

    def __init__(
        self,
        required_commands: Sequence[str] = (),
        required_env: Sequence[str] = (),
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize verifier with the requirements to check."""
        self.required_commands = list(required_commands)
        self.required_env = list(required_env)
        self.environ = environ if environ is not None else os.environ

    async def verify(self, token: CancellationToken) -> CheckResult:
        """Report missing commands and variables."""
        missing_commands = [
            c for c in self.required_commands if shutil.which(c) is None
        ]
        missing_env = [v for v in self.required_env if not self.environ.get(v)]

        problems = []
        if missing_commands:
            problems.append(f"missing commands: {', '.join(missing_commands)}")
        if missing_env:
            problems.append(f"missing environment variables: {', '.join(missing_env)}")

        if problems:
            message = "; ".join(problems)
            logger.error(f"Environment verification failed: {message}")
            return CheckResult(name="environment", passed=False, message=message)

        logger.info("Environment verification passed")
        return CheckResult(name="environment", passed=True)
