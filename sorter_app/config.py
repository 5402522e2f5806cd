"""
設定読み込みモジュール

環境変数 → secrets.toml → 既定値 の順で Firebase 接続設定を解決する。
secrets.toml の形式:

    firebase_database_url = "https://....firebasedatabase.app"
    firebase_storage_bucket = "sorter-master.firebasestorage.app"

    [firebase_credentials]
    type = "service_account"
    project_id = "sorter-master"
    ...
"""

import collections.abc
import logging
import os
import tomllib
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_ID = "sorter-master"
DEFAULT_DATABASE_URL = "https://sorter-master-default-rtdb.asia-southeast1.firebasedatabase.app"
DEFAULT_SECRETS_FILE = os.path.join(".secrets", "secrets.toml")
DEFAULT_LOG_DIR = "logs"


@dataclass
class Settings:
    """Firebase 接続およびバッチ実行設定"""
    project_id: str = DEFAULT_PROJECT_ID
    database_url: str = DEFAULT_DATABASE_URL
    storage_bucket: str = ""
    credentials: Optional[Dict[str, Any]] = None
    credentials_path: Optional[str] = None
    log_dir: str = DEFAULT_LOG_DIR
    dry_run: bool = False


def _to_dict(obj):
    """Mapping を素の dict に変換"""
    if isinstance(obj, collections.abc.Mapping):
        return {k: _to_dict(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_to_dict(i) for i in obj]
    else:
        return obj


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def load_secrets(path: Optional[str] = None) -> Dict[str, Any]:
    """secrets.toml を読み込む（存在しない・壊れている場合は空dict）"""
    path = path or os.environ.get("SORTER_SECRETS_FILE", DEFAULT_SECRETS_FILE)
    try:
        with open(path, "rb") as f:
            return _to_dict(tomllib.load(f))
    except FileNotFoundError:
        return {}
    except tomllib.TOMLDecodeError as e:
        logger.warning(f"secrets.toml の解析に失敗しました ({path}): {e}")
        return {}


def normalize_bucket(raw: Optional[str], project_id: str) -> str:
    """バケット名を正規化"""
    if not raw:
        raw = f"{project_id}.firebasestorage.app"
    b = str(raw).strip()
    b = b.replace("gs://", "").split("/")[0]
    return b


def normalize_database_url(raw: Optional[str], project_id: str) -> str:
    """Realtime Database URL を正規化"""
    if not raw:
        if project_id == DEFAULT_PROJECT_ID:
            return DEFAULT_DATABASE_URL
        raw = f"https://{project_id}-default-rtdb.firebaseio.com"
    url = str(raw).strip().rstrip("/")
    if not url.startswith("http"):
        url = f"https://{url}"
    return url


def load_settings(secrets_path: Optional[str] = None) -> Settings:
    """環境変数と secrets.toml から設定を構築"""
    secrets = load_secrets(secrets_path)
    creds = secrets.get("firebase_credentials") or None

    project_id = (
        os.environ.get("SORTER_PROJECT_ID")
        or (creds or {}).get("project_id")
        or (creds or {}).get("projectId")
        or DEFAULT_PROJECT_ID
    )
    database_url = normalize_database_url(
        os.environ.get("SORTER_DATABASE_URL") or secrets.get("firebase_database_url"),
        project_id,
    )
    storage_bucket = normalize_bucket(
        os.environ.get("SORTER_STORAGE_BUCKET")
        or secrets.get("firebase_storage_bucket")
        or (creds or {}).get("storage_bucket"),
        project_id,
    )
    credentials_path = (
        os.environ.get("SORTER_CREDENTIALS_PATH")
        or os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    )

    return Settings(
        project_id=project_id,
        database_url=database_url,
        storage_bucket=storage_bucket,
        credentials=creds,
        credentials_path=credentials_path,
        log_dir=os.environ.get("SORTER_LOG_DIR", DEFAULT_LOG_DIR),
        dry_run=_env_flag("SORTER_DRY_RUN"),
    )
