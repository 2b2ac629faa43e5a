"""
Build a server binary for a given commit.

The Typesense repository is cloned next to the working directory and
mounted into a long-lived build container; the commit is checked out and
built with bazel inside that container and the resulting binary is copied
out as ``typesense-server-<commit>``.
"""

import logging
import os
import platform
import subprocess
from typing import List, Optional

from .errors import CommandError, FilesystemError, HarnessError

logger = logging.getLogger(__name__)

DEFAULT_GIT_URL = "https://github.com/typesense/typesense.git"
DEFAULT_CONTAINER = "bazel-build"
DEFAULT_IMAGE = "ubuntu-build"

BUILD_COMMAND = " && ".join([
    "bazel build @com_google_protobuf//:protobuf_headers",
    "bazel build @com_google_protobuf//:protobuf_lite",
    "bazel build @com_google_protobuf//:protobuf",
    "bazel build @com_google_protobuf//:protoc",
    "bazel build --verbose_failures --jobs=6 //:typesense-server",
])
BUILT_BINARY = "/app/bazel-bin/typesense-server"


def run_command(command: List[str], cwd: Optional[str] = None) -> str:
    """Run a command and return its stdout; raise CommandError on failure"""
    logger.debug(f"Running: {' '.join(command)}")
    try:
        result = subprocess.run(command, cwd=cwd, capture_output=True, text=True)
    except OSError as e:
        raise CommandError(command, -1, str(e)) from e
    if result.returncode != 0:
        raise CommandError(command, result.returncode, result.stderr or result.stdout)
    return result.stdout.strip()


def docker_platform() -> str:
    machine = platform.machine().lower()
    return "linux/arm64" if machine in ("arm64", "aarch64") else "linux/amd64"


def binary_name(commit: str) -> str:
    return f"typesense-server-{commit}"


class Installer:

    def __init__(self, working_directory: str, git_url: str = DEFAULT_GIT_URL,
                 container_name: str = DEFAULT_CONTAINER, image_name: str = DEFAULT_IMAGE,
                 build_context: Optional[str] = None, assume_yes: bool = False, runner=run_command):
        self.working_directory = os.path.abspath(working_directory)
        self.git_url = git_url
        self.container_name = container_name
        self.image_name = image_name
        self.build_context = build_context or os.getcwd()
        self.assume_yes = assume_yes
        self.run = runner
        self.repo_dir = os.path.join(self.working_directory, f"{container_name}-typesense")

    def _confirm(self, question: str) -> bool:
        if self.assume_yes:
            return True
        return input(f"{question} (y/N): ").strip().lower() == 'y'

    def _git(self, *args) -> str:
        return self.run(["docker", "exec", self.container_name, "bash", "-c",
                         "cd /app && git " + " ".join(args)])

    def ensure_repository(self):
        if os.path.isdir(os.path.join(self.repo_dir, ".git")):
            logger.debug(f"Using existing repository at {self.repo_dir}")
            return
        if not self._confirm(f"Typesense repository not found. Clone {self.git_url} into {self.repo_dir}?"):
            raise HarnessError("Repository is required to build the server")
        logger.info(f"Cloning {self.git_url}")
        self.run(["git", "clone", self.git_url, self.repo_dir], cwd=self.working_directory)

    def ensure_image(self):
        try:
            self.run(["docker", "inspect", "--format", "{{.Id}}", self.image_name])
            return
        except CommandError as e:
            if "No such object" not in e.stderr:
                raise

        target = docker_platform()
        logger.info(f"Image not found. Building image {self.image_name} for {target}")
        self.run([
            "docker", "buildx", "build", "--load",
            "--platform", target,
            "--build-arg", f"TARGETPLATFORM={target}",
            "-t", self.image_name,
            self.build_context,
        ])

    def ensure_container(self):
        try:
            image = self.run(["docker", "inspect", "--format", "{{.Config.Image}}", self.container_name])
        except CommandError as e:
            if "No such object" not in e.stderr:
                raise
            logger.info(f"Container not found. Creating container {self.container_name}")
            self.run(["docker", "create", "-it", "--name", self.container_name,
                      "-v", f"{self.repo_dir}:/app", self.image_name])
            return
        if image != self.image_name:
            raise HarnessError(
                f"Container {self.container_name} uses image {image}, expected {self.image_name}"
            )

    def checkout(self, commit: Optional[str] = None) -> str:
        self._git("config", "--global", "--add", "safe.directory", "/app")
        self._git("fetch", "origin")
        target = commit or self._git("rev-parse", "origin/HEAD")
        self._git("checkout", target)
        resolved = self._git("rev-parse", "HEAD")
        logger.info(f"Checked out {resolved}")
        return resolved

    def build_and_save(self, commit: str) -> str:
        logger.info("Building typesense-server, this can take a long time")
        self.run(["docker", "exec", self.container_name, "bash", "-c", f"cd /app && {BUILD_COMMAND}"])

        destination = os.path.join(self.working_directory, binary_name(commit))
        self.run(["docker", "cp", f"{self.container_name}:{BUILT_BINARY}", destination])
        if not os.path.exists(destination):
            raise FilesystemError(f"Build output was not copied to {destination}")
        return destination

    def install(self, commit: Optional[str] = None) -> str:
        if not os.path.isdir(self.working_directory):
            raise FilesystemError(f"{self.working_directory} does not exist")

        self.ensure_repository()
        self.ensure_image()
        self.ensure_container()
        self.run(["docker", "start", self.container_name])
        try:
            resolved = self.checkout(commit)
            return self.build_and_save(resolved)
        finally:
            self.stop_container()

    def stop_container(self):
        try:
            self.run(["docker", "stop", self.container_name])
        except CommandError as e:
            logger.error(f"Could not stop container {self.container_name}: {e}")
