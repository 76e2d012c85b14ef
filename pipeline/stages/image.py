"""
Image-Publish stage - build one image, tag it twice, push both tags
"""

import logging
from typing import List

from core.exceptions import CommandError, RegistryError
from ..context import RunContext
from ..tags import ImageTags
from .base import Stage, StageResult


logger = logging.getLogger(__name__)


class ImagePublishStage(Stage):
    name = "image-publish"

    def repository(self, ctx: RunContext) -> str:
        image = ctx.definition.image
        namespace = image.namespace or ctx.config.docker_username
        repository = f"{namespace}/{image.name}" if namespace else image.name
        if ctx.config.docker_registry:
            repository = f"{ctx.config.docker_registry}/{repository}"
        return repository

    def execute(self, ctx: RunContext) -> StageResult:
        ctx.config.require("docker_username", "docker_password")

        self._login(ctx)

        tags = ImageTags.compose(self.repository(ctx), ctx.event.ref, ctx.now())
        invalid = tags.invalid_tags()
        if invalid:
            raise RegistryError(f"Not a valid image tag: {', '.join(invalid)}")

        self._docker(ctx, self.build_command(ctx, tags), "Image build")
        # Pushes are sequential; a failure after the first leaves it published
        for ref in (tags.versioned, tags.latest):
            self._docker(ctx, ["docker", "push", ref], f"Push of {ref}")

        return self.succeeded(
            f"Pushed {tags.versioned} and {tags.latest}",
            outputs={"image_tag": tags.short_tag},
            image=tags.versioned,
            latest=tags.latest
        )

    def build_command(self, ctx: RunContext, tags: ImageTags) -> List[str]:
        image = ctx.definition.image
        command = ["docker", "build", "-t", tags.versioned, "-t", tags.latest]
        if image.dockerfile:
            command += ["-f", image.dockerfile]
        command.append(image.context)
        return command

    def _login(self, ctx: RunContext) -> None:
        password = ctx.config.docker_password.get_secret_value()
        ctx.runner.add_secret(password)
        command = ["docker", "login", "--username", ctx.config.docker_username, "--password-stdin"]
        if ctx.config.docker_registry:
            command.append(ctx.config.docker_registry)
        try:
            ctx.runner.run(command, input=password)
        except CommandError as e:
            raise RegistryError(f"Registry login failed: {e}") from e
        logger.info(f"Logged in to {ctx.config.docker_registry or 'Docker Hub'} as {ctx.config.docker_username}")

    def _docker(self, ctx: RunContext, command: List[str], label: str) -> None:
        logger.info(f"$ {' '.join(command)}")
        try:
            ctx.runner.run(command, cwd=ctx.project_dir)
        except CommandError as e:
            raise RegistryError(f"{label} failed: {e}") from e
