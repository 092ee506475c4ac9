"""
Tests for the collaborator services: approval policies, sequence numbers,
the user directory and the notification inbox and email sink.
"""

import smtplib
from decimal import Decimal
from uuid import uuid4

import pytest

from procurement_kernel.domain.approval import ApprovalLevel, ApprovalModule, Role
from procurement_kernel.domain.notifications import NotificationEvent
from procurement_kernel.domain.sequence import SequenceFormat
from procurement_kernel.exceptions import (
    ActorNotFoundError,
    ConfigurationNotFoundError,
    DepartmentNotFoundError,
    ForbiddenError,
    NotificationNotFoundError,
    ValidationError,
)
from procurement_kernel.models.department import DepartmentModel
from procurement_kernel.services.approval_policy_service import ApprovalPolicyService
from procurement_kernel.services.identity_service import UserDirectory
from procurement_kernel.services.notification_service import (
    EmailNotificationSink,
    EmailSettings,
    FanOutNotificationSink,
    NotificationService,
)
from procurement_kernel.services.sequence_service import SequenceService
from tests.conftest import FailingSink, RecordingSink, make_draft


# =============================================================================
# Approval policies
# =============================================================================


class TestApprovalPolicyResolve:
    @pytest.mark.parametrize(
        "amount,expected",
        [
            ("0", "requisition-standard"),
            ("9999.99", "requisition-standard"),
            ("10000", "requisition-elevated"),
            ("49999.99", "requisition-elevated"),
            ("50000", "requisition-executive"),
            ("5000000", "requisition-executive"),
        ],
    )
    def test_half_open_tiers(self, session, org, amount, expected):
        chain = ApprovalPolicyService(session).resolve(ApprovalModule.REQUISITION, Decimal(amount))
        assert chain.config_name == expected

    def test_largest_floor_wins_on_overlap(self, session, org):
        policies = ApprovalPolicyService(session)
        policies.register(
            name="requisition-it-special",
            module=ApprovalModule.REQUISITION,
            min_amount=Decimal("5000"),
            max_amount=Decimal("10000"),
            levels=[ApprovalLevel(1, "Finance", Role.FINANCE)],
        )
        assert policies.resolve(ApprovalModule.REQUISITION, Decimal("6000")).roles == (Role.FINANCE,)
        assert policies.resolve(ApprovalModule.REQUISITION, Decimal("4000")).roles == (Role.APPROVER,)

    def test_modules_are_separate(self, session, org):
        chain = ApprovalPolicyService(session).resolve(ApprovalModule.PURCHASE_ORDER, Decimal("100"))
        assert chain.roles == (Role.PURCHASING,)

    def test_inactive_configuration_ignored(self, session, org):
        policies = ApprovalPolicyService(session)
        assert policies.deactivate("requisition-standard", ApprovalModule.REQUISITION)
        with pytest.raises(ConfigurationNotFoundError):
            policies.resolve(ApprovalModule.REQUISITION, Decimal("100"))

    def test_deactivate_unknown(self, session, org):
        assert not ApprovalPolicyService(session).deactivate("nope", ApprovalModule.REQUISITION)


class TestApprovalPolicyLogging:
    """Policy events log the module under a key that does not collide with
    the LogRecord attributes, at every level the suite enables."""

    def test_register_and_resolve_are_logged(self, session, captured_logs):
        policies = ApprovalPolicyService(session)
        policies.register(
            name="requisition-all",
            module=ApprovalModule.REQUISITION,
            min_amount=Decimal("0"),
            max_amount=None,
            levels=[ApprovalLevel(1, "Approve", Role.APPROVER)],
        )
        chain = policies.resolve(ApprovalModule.REQUISITION, Decimal("10"))

        assert chain.config_name == "requisition-all"
        logs = {r["message"]: r for r in captured_logs()}
        assert logs["approval_config_registered"]["approval_module"] == "requisition"
        assert logs["approval_chain_resolved"]["approval_module"] == "requisition"
        assert logs["approval_chain_resolved"]["config_name"] == "requisition-all"

    def test_create_without_policy_raises_configuration_not_found(
        self, session, captured_logs, make_requisition_service
    ):
        department = DepartmentModel(
            code="LAB", name="Laboratory", cost_center="CC-300",
            annual_budget=Decimal("1000"), available=Decimal("1000"), fiscal_year=2025,
        )
        session.add(department)
        session.flush()
        requester = UserDirectory(session).register_user(
            "Lee Requester", "lee@example.com", Role.REQUESTER, department.id,
        )
        session.commit()

        with pytest.raises(ConfigurationNotFoundError):
            make_requisition_service(session).create_requisition(requester.actor_id, make_draft("100"))

        missing = [r for r in captured_logs() if r["message"] == "approval_config_not_found"]
        assert missing and missing[0]["approval_module"] == "requisition"
        assert Decimal(missing[0]["amount"]) == Decimal("100")


class TestApprovalPolicyRegister:
    def test_register_replaces_levels(self, session, org):
        policies = ApprovalPolicyService(session)
        policies.register(
            name="requisition-standard",
            module=ApprovalModule.REQUISITION,
            min_amount=Decimal("0"),
            max_amount=Decimal("10000"),
            levels=[
                ApprovalLevel(1, "Manager", Role.APPROVER),
                ApprovalLevel(2, "Controller", Role.FINANCE, approval_limit=Decimal("9000")),
            ],
        )
        chain = policies.resolve(ApprovalModule.REQUISITION, Decimal("10"))
        assert chain.roles == (Role.APPROVER, Role.FINANCE)
        assert chain.levels[1].approval_limit == Decimal("9000")

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            (dict(min_amount=Decimal("0"), levels=[]), "levels"),
            (dict(min_amount=Decimal("-1"), levels=[ApprovalLevel(1, "a", Role.ADMIN)]), "min_amount"),
            (
                dict(min_amount=Decimal("10"), max_amount=Decimal("10"),
                     levels=[ApprovalLevel(1, "a", Role.ADMIN)]),
                "max_amount",
            ),
            (
                dict(min_amount=Decimal("0"),
                     levels=[ApprovalLevel(1, "a", Role.ADMIN), ApprovalLevel(1, "b", Role.FINANCE)]),
                "levels.order",
            ),
        ],
    )
    def test_invalid_configuration(self, session, org, kwargs, field):
        with pytest.raises(ValidationError) as exc_info:
            ApprovalPolicyService(session).register(
                name="bad", module=ApprovalModule.REQUISITION, **kwargs,
            )
        assert field in exc_info.value.field_errors


# =============================================================================
# Sequences
# =============================================================================


class TestSequenceService:
    def test_counters_are_per_name(self, session, deterministic_clock, db_engine):
        sequences = SequenceService(session, deterministic_clock)
        assert sequences.next("requisition") == "REQ-2025-00001"
        assert sequences.next("purchase_order") == "OC-2025-00001"
        assert sequences.next("requisition") == "REQ-2025-00002"

    def test_counters_restart_each_year(self, session, deterministic_clock, db_engine):
        from datetime import datetime, timezone

        sequences = SequenceService(session, deterministic_clock)
        sequences.next("requisition")
        deterministic_clock.set_time(datetime(2026, 1, 2, tzinfo=timezone.utc))
        assert sequences.next("requisition") == "REQ-2026-00001"
        assert sequences.current_value("requisition", 2025) == 1

    def test_custom_formats(self, session, deterministic_clock, db_engine):
        sequences = SequenceService(
            session, deterministic_clock, formats={"requisition": SequenceFormat("PR", 3)},
        )
        assert sequences.next("requisition") == "PR-2025-001"

    def test_rollback_returns_number(self, session, deterministic_clock, db_engine):
        sequences = SequenceService(session, deterministic_clock)
        sequences.next("requisition")
        session.commit()
        sequences.next("requisition")
        session.rollback()
        assert sequences.next("requisition") == "REQ-2025-00002"


# =============================================================================
# User directory
# =============================================================================


class TestUserDirectory:
    def test_resolve(self, session, org):
        actor = UserDirectory(session).resolve(org.approver)
        assert actor.role == Role.APPROVER
        assert actor.department_id == org.ops_id
        assert actor.email == "ana@example.com"

    def test_unknown_and_inactive(self, session, org):
        directory = UserDirectory(session)
        with pytest.raises(ActorNotFoundError):
            directory.resolve(uuid4())
        directory.deactivate_user(org.finance)
        with pytest.raises(ActorNotFoundError):
            directory.resolve(org.finance)

    def test_find_by_role_scoped_to_department(self, session, org):
        directory = UserDirectory(session)
        assert {a.actor_id for a in directory.find_by_role(Role.APPROVER)} == {org.approver, org.it_approver}
        assert [a.actor_id for a in directory.find_by_role(Role.APPROVER, org.it_id)] == [org.it_approver]

    def test_register_updates_by_email(self, session, org):
        directory = UserDirectory(session)
        updated = directory.register_user("Rita R.", "rita@example.com", Role.APPROVER, org.it_id)
        assert updated.actor_id == org.requester
        assert updated.role == Role.APPROVER

    def test_register_with_unknown_department(self, session, org):
        with pytest.raises(DepartmentNotFoundError):
            UserDirectory(session).register_user("X", "x@example.com", Role.REQUESTER, uuid4())


# =============================================================================
# Notification inbox
# =============================================================================


@pytest.fixture
def inbox(session, deterministic_clock) -> NotificationService:
    return NotificationService(session, deterministic_clock)


class TestNotificationInbox:
    def test_requisition_events_land_in_inbox(self, session, org, make_requisition_service, inbox):
        service = make_requisition_service(session, notifier=inbox)
        created = service.create_requisition(org.requester, make_draft("500"))

        (note,) = inbox.list_for_user(org.requester)
        assert note.event == NotificationEvent.REQUISITION_CREATED
        assert note.title == f"Requisition {created.number} submitted"
        assert note.related_model == "requisition"
        assert note.related_id == created.id
        assert inbox.unread_count(org.approver) == 1

    def test_mark_read(self, session, org, inbox):
        inbox.notify(org.requester, NotificationEvent.REQUISITION_APPROVED, {"number": "REQ-1"})
        session.commit()
        (note,) = inbox.list_for_user(org.requester, unread_only=True)

        read = inbox.mark_read(org.requester, note.id)
        assert read.is_read
        assert read.read_at is not None
        assert inbox.unread_count(org.requester) == 0

    def test_mark_read_of_someone_elses(self, session, org, inbox):
        inbox.notify(org.requester, NotificationEvent.REQUISITION_APPROVED, {"number": "REQ-1"})
        session.commit()
        (note,) = inbox.list_for_user(org.requester)
        with pytest.raises(ForbiddenError):
            inbox.mark_read(org.other_requester, note.id)
        with pytest.raises(NotificationNotFoundError):
            inbox.mark_read(org.requester, uuid4())

    def test_mark_all_read(self, session, org, inbox):
        for _ in range(3):
            inbox.notify(org.requester, NotificationEvent.REQUISITION_APPROVED, {"number": "REQ-1"})
        session.commit()
        assert inbox.mark_all_read(org.requester) == 3
        assert inbox.unread_count(org.requester) == 0


# =============================================================================
# Email and fan-out sinks
# =============================================================================


class FakeSMTP:
    instances: list["FakeSMTP"] = []

    def __init__(self, host, port):
        self.host, self.port = host, port
        self.started_tls = False
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, username, password):
        if password == "wrong":
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    def send_message(self, msg):
        self.sent.append(msg)


SMTP_SETTINGS = EmailSettings(
    smtp_host="smtp.example.com", smtp_username="mailer", smtp_password="secret",
)


@pytest.fixture(autouse=True)
def _reset_fake_smtp():
    FakeSMTP.instances.clear()
    yield


class TestEmailSink:
    def test_sends_selected_events(self, session, org):
        sink = EmailNotificationSink(SMTP_SETTINGS, UserDirectory(session), smtp_factory=FakeSMTP)
        sink.notify(
            org.approver,
            NotificationEvent.APPROVAL_REQUIRED,
            {"number": "REQ-2025-00001", "title": "Chairs", "requisition_id": str(uuid4())},
        )
        (server,) = FakeSMTP.instances
        (msg,) = server.sent
        assert server.started_tls
        assert msg["To"] == "ana@example.com"
        assert msg["Subject"] == "Requisition REQ-2025-00001 awaits your approval"

    def test_ignores_other_events(self, session, org):
        sink = EmailNotificationSink(SMTP_SETTINGS, UserDirectory(session), smtp_factory=FakeSMTP)
        sink.notify(org.requester, NotificationEvent.REQUISITION_CREATED, {"number": "REQ-1"})
        assert FakeSMTP.instances == []

    def test_unconfigured_transport_skips(self, session, org):
        sink = EmailNotificationSink(EmailSettings(), UserDirectory(session), smtp_factory=FakeSMTP)
        assert sink.send(["a@example.com"], "s", "<p>h</p>", "t") is False
        assert FakeSMTP.instances == []

    def test_smtp_failure_is_reported_not_raised(self, session, org, captured_logs):
        settings = EmailSettings(smtp_host="smtp.example.com", smtp_username="u", smtp_password="wrong")
        sink = EmailNotificationSink(settings, UserDirectory(session), smtp_factory=FakeSMTP)
        assert sink.send(["a@example.com"], "s", "<p>h</p>", "t") is False
        assert "email_send_failed" in [r["message"] for r in captured_logs()]


class TestFanOutSink:
    def test_one_failure_does_not_block_others(self):
        recorder = RecordingSink()
        fan_out = FanOutNotificationSink([FailingSink(), recorder])
        user = uuid4()
        fan_out.notify(user, NotificationEvent.REQUISITION_APPROVED, {"number": "REQ-1"})
        assert recorder.events_for(user) == [NotificationEvent.REQUISITION_APPROVED]
