"""
ユーザー設定管理

ユーザーごとの検索・通知設定を検証してストアに保存する。
"""

import json
import logging

import pydantic

from vinted_notifier.core.errors import ValidationError
from vinted_notifier.core.models import UserConfig
from vinted_notifier.core.store import RedisStore

logger = logging.getLogger(__name__)

CONFIG_KEY_PREFIX = "user:"
CONFIG_KEY_SUFFIX = ":config"


def config_key(subject: str) -> str:
    return f"{CONFIG_KEY_PREFIX}{subject}{CONFIG_KEY_SUFFIX}"


def validate_config(data: dict) -> UserConfig:
    """
    設定を検証

    Raises:
        ValidationError: スキーマに合わない場合
    """
    if not isinstance(data, dict):
        raise ValidationError("設定はオブジェクトである必要があります")
    try:
        return UserConfig.model_validate(data)
    except pydantic.ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ValidationError(f"設定が不正です: {', '.join(errors)}", details=errors) from e


class UserConfigStore:
    """ユーザー設定のCRUD"""

    def __init__(self, store: RedisStore):
        self.store = store

    async def set_config(self, subject: str, data: dict) -> UserConfig:
        """検証して保存（不正なら何も書き込まない）"""
        config = validate_config(data)
        await self.store.set(config_key(subject), config.model_dump_json())
        logger.info(f"ユーザー設定を保存: {subject}")
        return config

    async def get_config(self, subject: str) -> UserConfig | None:
        raw = await self.store.get(config_key(subject))
        if raw is None:
            return None
        return UserConfig.model_validate_json(raw)

    async def update_config(self, subject: str, partial: dict) -> UserConfig:
        """現在の設定に部分更新をマージして保存"""
        current = await self.get_config(subject)
        merged = current.model_dump() if current else {}
        for section, values in partial.items():
            if isinstance(values, dict) and isinstance(merged.get(section), dict):
                merged[section] = {**merged[section], **values}
            else:
                merged[section] = values
        return await self.set_config(subject, merged)

    async def delete_config(self, subject: str) -> bool:
        deleted = await self.store.delete(config_key(subject))
        logger.info(f"ユーザー設定を削除: {subject}")
        return deleted > 0

    async def list_subjects(self) -> list[str]:
        """設定を持つサブジェクト一覧"""
        keys = await self.store.keys_with_prefix(CONFIG_KEY_PREFIX)
        return sorted(
            key[len(CONFIG_KEY_PREFIX):-len(CONFIG_KEY_SUFFIX)]
            for key in keys
            if key.endswith(CONFIG_KEY_SUFFIX)
        )


def parse_config_text(text: str) -> dict:
    """チャットやファイルから渡されたJSONを辞書に変換"""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"JSONの形式が不正です: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("設定はオブジェクトである必要があります")
    return data
