# src/backends/docker_backend.py — v1
"""Build backend driving the docker CLI.

``docker build --quiet`` prints the content-addressed image ID, which becomes
the build stage's image reference. Push tags that ID into the repository and
pushes each tag, logging in first when credentials are supplied.
"""

from __future__ import annotations

import logging

from shipline.backends.base_build_backend import BaseBuildBackend, BuildRequest
from shipline.backends.credentials import secret_values
from shipline.backends.process import run_process, redact
from shipline.core.errors import BuildFailure, PushFailure, TransientInfraError
from shipline.core.models import Credentials
from shipline.core.retry import is_transient_output

logger = logging.getLogger(__name__)

_DAEMON_UNAVAILABLE = "cannot connect to the docker daemon"


class DockerCliBackend(BaseBuildBackend):
    """docker CLI implementation of BaseBuildBackend."""

    def __init__(self, binary: str = "docker", timeout_s: float | None = 1800.0) -> None:
        self._binary = binary
        self._timeout_s = timeout_s

    async def build(
        self, request: BuildRequest, credentials: Credentials | None = None
    ) -> str:
        argv = [self._binary, "build", "--quiet", "-f", str(request.dockerfile)]
        for key, value in sorted(request.labels.items()):
            argv += ["--label", f"{key}={value}"]
        argv.append(str(request.context_dir))

        logger.info("Building image for %s from %s", request.service_id, request.context_dir)
        result = await run_process(argv, timeout_s=self._timeout_s)
        if not result.ok:
            if _DAEMON_UNAVAILABLE in result.output.lower():
                raise TransientInfraError(result.output.strip())
            reason = "timed out" if result.timed_out else f"exit {result.exit_code}"
            raise BuildFailure(f"docker build failed ({reason})", logs=result.output)

        lines = [line.strip() for line in result.output.splitlines() if line.strip()]
        if not lines or not lines[-1].startswith("sha256:"):
            raise BuildFailure("docker build did not report an image ID", logs=result.output)
        return lines[-1]

    async def push(
        self,
        image_reference: str,
        repository: str,
        tags: list[str],
        credentials: Credentials | None = None,
    ) -> list[str]:
        secrets = secret_values(credentials)
        if credentials is not None and credentials.username:
            await self._login(repository, credentials, secrets)

        pushed: list[str] = []
        for tag in tags:
            target = f"{repository}:{tag}"
            tagged = await run_process([self._binary, "tag", image_reference, target])
            if not tagged.ok:
                raise PushFailure(f"docker tag {target} failed", logs=tagged.output)

            result = await run_process(
                [self._binary, "push", target], timeout_s=self._timeout_s
            )
            output = redact(result.output, secrets)
            if not result.ok:
                if result.timed_out or is_transient_output(output):
                    raise TransientInfraError(f"push {target}: {output.strip()[-500:]}")
                raise PushFailure(f"docker push {target} failed", logs=output)
            logger.info("Pushed %s", target)
            pushed.append(target)
        return pushed

    async def _login(
        self, repository: str, credentials: Credentials, secrets: list[str]
    ) -> None:
        password = (
            credentials.password.get_secret_value() if credentials.password else ""
        )
        result = await run_process(
            [
                self._binary, "login", registry_host(repository),
                "--username", credentials.username or "", "--password-stdin",
            ],
            stdin=password,
            timeout_s=self._timeout_s,
        )
        if not result.ok:
            output = redact(result.output, secrets)
            if is_transient_output(output):
                raise TransientInfraError(f"registry login: {output.strip()}")
            raise PushFailure("registry login failed", logs=output)


def registry_host(repository: str) -> str:
    """Registry hostname of a repository; Docker Hub when none is given."""
    first, _, rest = repository.partition("/")
    if rest and ("." in first or ":" in first or first == "localhost"):
        return first
    return "docker.io"
