import pytest

from errors import Internal, InvalidOtp, OtpExpired
from otp import OtpLedger, generate_code


@pytest.fixture
def ledger(ctx):
    return OtpLedger(ctx)


def test_generate_code_is_six_digits():
    for _ in range(200):
        code = generate_code()
        assert len(code) == 6
        assert 100000 <= int(code) <= 999999


def test_issue_stores_record_and_sends_email(ledger, db, mailer):
    record = ledger.issue("  Buyer@Example.com ")
    assert record.email == "buyer@example.com"
    assert record.verified is False

    stored = db["otp"].find_one({"email": "buyer@example.com"})
    assert stored["code"] == record.code
    assert stored["verified"] is False

    assert len(mailer.sent) == 1
    assert mailer.sent[0]["to"] == "buyer@example.com"
    assert record.code in mailer.sent[0]["text"]


def test_reissue_supersedes_previous_code(ledger, db):
    first = ledger.issue("buyer@example.com")
    second = ledger.issue("buyer@example.com")
    assert db["otp"].count_documents({"email": "buyer@example.com"}) == 1

    if first.code != second.code:
        with pytest.raises(InvalidOtp):
            ledger.verify("buyer@example.com", first.code)
    assert ledger.verify("buyer@example.com", second.code).verified is True


def test_verify_is_single_use(ledger, clock):
    record = ledger.issue("buyer@example.com")
    clock.advance(minutes=2)

    result = ledger.verify("buyer@example.com", record.code)
    assert result.verified is True
    assert result.verified_at == clock.now

    with pytest.raises(InvalidOtp):
        ledger.verify("buyer@example.com", record.code)


def test_wrong_code_and_unknown_email_look_the_same(ledger):
    record = ledger.issue("buyer@example.com")
    wrong = "000000" if record.code != "000000" else "111111"

    with pytest.raises(InvalidOtp) as wrong_code:
        ledger.verify("buyer@example.com", wrong)
    with pytest.raises(InvalidOtp) as never_issued:
        ledger.verify("nobody@example.com", record.code)
    assert wrong_code.value.message == never_issued.value.message


def test_code_valid_at_exactly_ten_minutes(ledger, clock):
    record = ledger.issue("buyer@example.com")
    clock.advance(minutes=10)
    assert ledger.verify("buyer@example.com", record.code).verified is True


def test_expired_code_is_deleted(ledger, clock, db):
    record = ledger.issue("buyer@example.com")
    clock.advance(minutes=11)

    with pytest.raises(OtpExpired):
        ledger.verify("buyer@example.com", record.code)
    assert db["otp"].count_documents({"email": "buyer@example.com"}) == 0

    with pytest.raises(InvalidOtp):
        ledger.verify("buyer@example.com", record.code)


def test_failed_delivery_keeps_record(ledger, mailer, db):
    mailer.fail = True
    with pytest.raises(Internal) as exc:
        ledger.issue("buyer@example.com")
    assert "provider unavailable" in exc.value.error

    stored = db["otp"].find_one({"email": "buyer@example.com"})
    assert stored is not None
    assert ledger.verify("buyer@example.com", stored["code"]).verified is True


def test_verify_marks_user_email_verified(ledger, db):
    db["user"].insert_one({"name": "B", "email": "buyer@example.com", "email_verified": False})
    record = ledger.issue("buyer@example.com")
    ledger.verify("buyer@example.com", record.code)
    assert db["user"].find_one({"email": "buyer@example.com"})["email_verified"] is True
