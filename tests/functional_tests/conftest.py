import json
import sys
from pathlib import Path

import pytest

# Add repo root to path for imports
repo_root = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(repo_root))

from engines.document import get_document_engine
from pagewright import Pagewright


@pytest.fixture
def engine():
    return get_document_engine("pikepdf", {})


@pytest.fixture
def config_path(tmp_path):
    """The shipped configuration, with every store redirected into tmp_path."""
    with open(repo_root / "config" / "config.json") as f:
        config = json.load(f)
    config['placements']['backends']['jsonfile']['path'] = str(tmp_path / "placements.json")
    config['blob_stores']['local']['root'] = str(tmp_path / "blobs")

    path = tmp_path / "config.json"
    path.write_text(json.dumps(config))
    return path


@pytest.fixture
def pagewright(config_path):
    pw = Pagewright(config_path=config_path)
    pw.initialize()
    return pw
