"""Shared fixtures for architecture tests."""

import os

import pytest
from pytestarch import (
    EvaluableArchitecture,
    LayeredArchitecture,
    get_evaluable_architecture,
)


@pytest.fixture(scope="session")
def evaluable() -> EvaluableArchitecture:
    """Build evaluable architecture from src/toolweave."""
    src_dir = os.path.abspath(
        os.path.join(os.path.dirname(__file__), "..", "..", "src")
    )
    project_path = os.path.join(src_dir, "toolweave")
    return get_evaluable_architecture(src_dir, project_path)


@pytest.fixture(scope="session")
def layers() -> LayeredArchitecture:
    """Define the four layers.

    PyTestArch resolves module names relative to the source root,
    so modules appear as 'src.toolweave.domain', etc.
    """
    return (
        LayeredArchitecture()
        .layer("domain")
        .containing_modules(["src.toolweave.domain"])
        .layer("learning")
        .containing_modules(["src.toolweave.learning"])
        .layer("application")
        .containing_modules(["src.toolweave.application"])
        .layer("infrastructure")
        .containing_modules(["src.toolweave.infrastructure"])
    )
