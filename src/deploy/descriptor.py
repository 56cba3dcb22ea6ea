# src/deploy/descriptor.py — v1
"""Deployment descriptor rendering.

This is the one place an image reference is interpolated into a
deployment document. The template must contain the placeholder exactly once
and the rendered result must still parse as YAML.
"""

from __future__ import annotations

import re
from pathlib import Path

import yaml

from shipline.core.errors import DescriptorError

DEFAULT_PLACEHOLDER = "{{IMAGE}}"

# registry/path:tag, registry/path@sha256:..., or a bare sha256:... image ID
_IMAGE_REFERENCE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/:@+-]*$")


def load_template(path: Path | str) -> str:
    """Read a descriptor template from disk."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise DescriptorError(f"Cannot read descriptor template {path}: {e}") from e


def validate_image_reference(image_reference: str) -> str:
    if not image_reference or not _IMAGE_REFERENCE.match(image_reference):
        raise DescriptorError(f"Refusing to render invalid image reference {image_reference!r}")
    return image_reference


def render_descriptor(
    template: str,
    image_reference: str,
    placeholder: str = DEFAULT_PLACEHOLDER,
) -> str:
    """Substitute image_reference for the placeholder in template.

    Raises:
        DescriptorError: If the placeholder is missing or repeated, the image
            reference is malformed, or the result is not valid YAML.
    """
    validate_image_reference(image_reference)

    occurrences = template.count(placeholder)
    if occurrences != 1:
        raise DescriptorError(
            f"Template must contain placeholder {placeholder!r} exactly once "
            f"(found {occurrences})"
        )

    rendered = template.replace(placeholder, image_reference)
    try:
        documents = [doc for doc in yaml.safe_load_all(rendered) if doc is not None]
    except yaml.YAMLError as e:
        raise DescriptorError(f"Rendered descriptor is not valid YAML: {e}") from e
    if not documents:
        raise DescriptorError("Rendered descriptor is empty")
    return rendered
