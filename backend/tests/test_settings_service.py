"""Free message policy tests"""
import json
import pytest
from unittest.mock import patch
from sqlalchemy.exc import OperationalError

from app.core.config import FREE_MESSAGE_SETTINGS_KEY
from app.core.errors import ErrorKind
from app.models.system_setting import SystemSetting
from app.services.settings_service import (
    GlobalFreeAllowance, PerModelFreeAllowance,
    parse_free_message_policy, load_free_message_policy, save_free_message_policy
)


@pytest.mark.medium
class TestParsePolicy:
    @pytest.mark.parametrize("raw,expected", [
        ({"mode": "global", "globalLimit": 5}, GlobalFreeAllowance(5)),
        ({"mode": "global", "globalLimit": 2.6}, GlobalFreeAllowance(3)),
        ({"mode": "global", "globalLimit": -4}, GlobalFreeAllowance(0)),
        ({"mode": "global", "globalLimit": "many"}, GlobalFreeAllowance(3)),
        ({"mode": "global"}, GlobalFreeAllowance(3)),
        ({"mode": "per-model", "globalLimit": 9}, PerModelFreeAllowance()),
        ({"mode": "weird"}, PerModelFreeAllowance()),
        (None, PerModelFreeAllowance()),
        ([1, 2], PerModelFreeAllowance()),
    ])
    def test_parse(self, raw, expected):
        assert parse_free_message_policy(raw) == expected

    def test_to_dict(self):
        assert GlobalFreeAllowance(7).to_dict() == {"mode": "global", "globalLimit": 7}
        assert PerModelFreeAllowance().to_dict()["mode"] == "per-model"


@pytest.mark.high
class TestStoredPolicy:
    def test_default_is_per_model(self, db_session):
        assert load_free_message_policy(db_session) == PerModelFreeAllowance()

    def test_save_then_load(self, db_session):
        saved = save_free_message_policy(db_session, {"mode": "global", "globalLimit": 10.4}).unwrap()

        assert saved == GlobalFreeAllowance(10)
        assert load_free_message_policy(db_session) == GlobalFreeAllowance(10)
        row = db_session.query(SystemSetting).filter(SystemSetting.key == FREE_MESSAGE_SETTINGS_KEY).one()
        assert json.loads(row.value) == {"mode": "global", "globalLimit": 10}

    def test_save_overwrites(self, db_session):
        save_free_message_policy(db_session, {"mode": "global", "globalLimit": 1}).unwrap()
        save_free_message_policy(db_session, {"mode": "per-model"}).unwrap()

        assert load_free_message_policy(db_session) == PerModelFreeAllowance()
        assert db_session.query(SystemSetting).count() == 1

    def test_unknown_mode_rejected(self, db_session):
        result = save_free_message_policy(db_session, {"mode": "unlimited"})

        assert result.kind == ErrorKind.VALIDATION
        assert db_session.query(SystemSetting).count() == 0

    def test_malformed_row_falls_back(self, db_session):
        db_session.add(SystemSetting(key=FREE_MESSAGE_SETTINGS_KEY, value="{not json"))
        db_session.commit()

        assert load_free_message_policy(db_session) == PerModelFreeAllowance()

    def test_storage_error_falls_back(self, db_session):
        with patch.object(db_session, "query", side_effect=OperationalError("SELECT", {}, Exception("gone"))):
            assert load_free_message_policy(db_session) == PerModelFreeAllowance()
