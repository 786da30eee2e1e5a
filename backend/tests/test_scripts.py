"""Operator script tests"""
import sys
from pathlib import Path
from unittest.mock import patch
import pytest

scripts_dir = Path(__file__).parent.parent / "scripts"
if str(scripts_dir) not in sys.path:
    sys.path.insert(0, str(scripts_dir))

import grant_credits as grant_script  # noqa: E402

from app.models.user_subscription import UserSubscription  # noqa: E402


@pytest.mark.medium
class TestGrantCreditsScript:
    def test_grant_by_email(self, test_user, db_session, capsys):
        assert grant_script.grant("READER@example.com", 3000, 15, db=db_session) is True

        subscription = db_session.query(UserSubscription).filter(UserSubscription.user_id == test_user.id).one()
        assert subscription.token_balance == 3000
        assert "Granted 3000 tokens" in capsys.readouterr().out

    def test_grant_unknown_email(self, db_session, capsys):
        assert grant_script.grant("ghost@example.com", 100, 15, db=db_session) is False
        assert "User not found" in capsys.readouterr().out

    def test_grant_invalid_amount(self, test_user, db_session, capsys):
        assert grant_script.grant(test_user.email, -5, 15, db=db_session) is False
        assert "bad_request:grant" in capsys.readouterr().out

    def test_list_balances(self, test_user, starter_plan, make_subscription, db_session, capsys):
        make_subscription(test_user, starter_plan, balance=2500)

        assert grant_script.list_balances(db=db_session) is True

        out = capsys.readouterr().out
        assert "reader@example.com" in out
        assert "25 credits" in out

    def test_main_requires_email_and_tokens(self, capsys):
        assert grant_script.main(["--tokens", "10"]) == 1

    def test_main_grants(self, test_user, db_session):
        with patch.object(grant_script, "SessionLocal", return_value=db_session):
            assert grant_script.main(["--email", test_user.email, "--tokens", "400", "--days", "7"]) == 0

        assert db_session.query(UserSubscription).count() == 1
