import pathlib

import pytest

from . import INSTANCE_YAML


@pytest.fixture(name="instance_file")
def instance_file_fixture(tmp_path: pathlib.Path) -> pathlib.Path:
    """Write an ArgoCD instance to a temporary file."""
    path = tmp_path / "argocd.yaml"
    path.write_text(INSTANCE_YAML)
    return path
