"""Pytest configuration: make the src layout importable and pin Firestore to the emulator."""

import os
import sys
from pathlib import Path

_SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if str(_SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(_SRC_ROOT))

# 実 GCP への誤接続を防ぐため、テストでは常にエミュレータ設定を使う。
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("FIRESTORE_EMULATOR_HOST", "localhost:8080")
os.environ.setdefault("FIRESTORE_PROJECT_ID", "test-project")
