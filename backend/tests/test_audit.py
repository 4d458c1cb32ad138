from datetime import datetime, timedelta
from unittest.mock import Mock, patch

from sqlalchemy.exc import SQLAlchemyError

import models
from utils.audit import (
    AuditLogger, Actions, EntityTypes, Severity, get_action_description, get_client_ip,
    get_severity_label, parse_user_agent
)

CHROME_WINDOWS = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"
SAFARI_IPHONE = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 Version/17.0 Mobile/15E148 Safari/604.1"
EDGE = "Mozilla/5.0 (Windows NT 10.0) AppleWebKit/537.36 Chrome/120.0 Safari/537.36 Edg/120.0"
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"


def fake_request(headers=None, host="10.0.0.1"):
    request = Mock()
    request.headers = headers or {}
    request.client = Mock(host=host) if host else None
    return request


class TestParseUserAgent:
    def test_chrome_on_windows(self):
        assert parse_user_agent(CHROME_WINDOWS) == {"browser": "Chrome", "os": "Windows", "device": "Desktop"}

    def test_safari_on_iphone(self):
        assert parse_user_agent(SAFARI_IPHONE) == {"browser": "Safari", "os": "iOS", "device": "Mobile"}

    def test_edge_is_not_chrome(self):
        assert parse_user_agent(EDGE)["browser"] == "Edge"

    def test_firefox_on_linux(self):
        assert parse_user_agent(FIREFOX_LINUX) == {"browser": "Firefox", "os": "Linux", "device": "Desktop"}


class TestClientIp:
    def test_forwarded_for_first_hop(self):
        request = fake_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.2", "X-Real-IP": "198.51.100.1"})
        assert get_client_ip(request) == "203.0.113.7"

    def test_real_ip_then_cloudflare(self):
        assert get_client_ip(fake_request({"X-Real-IP": "198.51.100.1", "CF-Connecting-IP": "192.0.2.9"})) == "198.51.100.1"
        assert get_client_ip(fake_request({"CF-Connecting-IP": "192.0.2.9"})) == "192.0.2.9"

    def test_socket_peer(self):
        assert get_client_ip(fake_request()) == "10.0.0.1"
        assert get_client_ip(fake_request(host=None)) is None


def test_descriptions_and_labels():
    assert get_action_description(Actions.CREDENTIAL_UPDATED) == "Credentials updated"
    assert get_action_description("something_new") == "something_new"
    assert get_severity_label(Severity.HIGH) == "High"


def test_log_writes_row(db_session, test_user):
    assert AuditLogger.log(
        db_session,
        action=Actions.GROUP_CREATED,
        entity_type=EntityTypes.GROUP,
        user_id=test_user.id,
        entity_id=7,
        details={"name": "x"},
    ) is True

    entry = db_session.query(models.AuditLog).one()
    assert entry.severity == "low"
    assert entry.details == {"name": "x"}


def test_log_failure_is_swallowed(db_session):
    with patch.object(db_session, "commit", side_effect=SQLAlchemyError("boom")):
        assert AuditLogger.log(db_session, action=Actions.USER_LOGIN, entity_type=EntityTypes.USER) is False


def test_log_with_request_fills_ip_and_agent(db_session, test_user):
    request = fake_request({"X-Forwarded-For": "203.0.113.7", "user-agent": FIREFOX_LINUX})
    AuditLogger.log_with_request(
        db_session, request,
        user_id=test_user.id, action=Actions.USER_LOGIN, entity_type=EntityTypes.USER
    )
    entry = db_session.query(models.AuditLog).one()
    assert entry.ip_address == "203.0.113.7"
    assert entry.user_agent == FIREFOX_LINUX


class TestAuditLogsEndpoint:
    def seed(self, db_session, user):
        now = datetime.utcnow()
        rows = [
            (Actions.USER_LOGIN, EntityTypes.USER, Severity.LOW, now - timedelta(days=3)),
            (Actions.GROUP_CREATED, EntityTypes.GROUP, Severity.LOW, now - timedelta(days=2)),
            (Actions.CREDENTIAL_UPDATED, EntityTypes.SUBSCRIPTION, Severity.HIGH, now - timedelta(days=1)),
        ]
        for action, entity_type, severity, created_at in rows:
            db_session.add(models.AuditLog(
                user_id=user.id, action=action, entity_type=entity_type, severity=severity,
                created_at=created_at, user_agent=CHROME_WINDOWS
            ))
        db_session.commit()

    def test_lists_own_logs_newest_first(self, client, auth_headers, test_user, other_user, db_session):
        self.seed(db_session, test_user)
        self.seed(db_session, other_user)

        data = client.get("/audit/logs", headers=auth_headers).json()
        assert [log["action"] for log in data["logs"]] == ["credential_updated", "group_created", "user_login"]
        assert data["pagination"] == {"page": 1, "limit": 20, "total": 3, "total_pages": 1}

        first = data["logs"][0]
        assert first["action_description"] == "Credentials updated"
        assert first["severity_label"] == "High"
        assert first["user_agent"] == {"browser": "Chrome", "os": "Windows", "device": "Desktop"}

    def test_filters(self, client, auth_headers, test_user, db_session):
        self.seed(db_session, test_user)

        def actions(params):
            return [log["action"] for log in client.get("/audit/logs", headers=auth_headers, params=params).json()["logs"]]

        assert actions({"severity": "high"}) == ["credential_updated"]
        assert actions({"entity_type": "group"}) == ["group_created"]
        assert actions({"action": "user_login"}) == ["user_login"]
        assert actions({"search": "CREDENTIAL"}) == ["credential_updated"]
        start = (datetime.utcnow() - timedelta(days=2, hours=12)).isoformat()
        assert actions({"start_date": start}) == ["credential_updated", "group_created"]
        end = (datetime.utcnow() - timedelta(days=2, hours=12)).isoformat()
        assert actions({"end_date": end}) == ["user_login"]

    def test_pagination(self, client, auth_headers, test_user, db_session):
        self.seed(db_session, test_user)
        data = client.get("/audit/logs", headers=auth_headers, params={"limit": 2, "page": 2}).json()
        assert [log["action"] for log in data["logs"]] == ["user_login"]
        assert data["pagination"]["total_pages"] == 2

        assert client.get("/audit/logs", headers=auth_headers, params={"limit": 101}).status_code == 422
        assert client.get("/audit/logs", headers=auth_headers, params={"severity": "urgent"}).status_code == 422
