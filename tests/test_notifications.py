from types import SimpleNamespace

import pytest
from twilio.base.exceptions import TwilioException

import notifications


class FakeTwilioClient:
    sent = []

    def __init__(self, account_sid, auth_token):
        self.credentials = (account_sid, auth_token)
        self.messages = self

    def create(self, body, from_, to):
        FakeTwilioClient.sent.append({'body': body, 'from_': from_, 'to': to, 'credentials': self.credentials})
        return SimpleNamespace(sid='SM123')


@pytest.fixture
def twilio(monkeypatch):
    FakeTwilioClient.sent = []
    monkeypatch.setattr(notifications, 'SMS_PROVIDER', 'twilio')
    monkeypatch.setattr(notifications, 'TWILIO_ACCOUNT_SID', 'AC123')
    monkeypatch.setattr(notifications, 'TWILIO_AUTH_TOKEN', 'secret')
    monkeypatch.setattr(notifications, 'TWILIO_FROM_NUMBER', '+15005550006')
    monkeypatch.setattr(notifications, 'Client', FakeTwilioClient)
    return FakeTwilioClient


def test_mobile_otp_goes_through_twilio(twilio):
    assert notifications.send_mobile_otp('+919999999999', '123456') is True

    assert len(twilio.sent) == 1
    message = twilio.sent[0]
    assert message['to'] == '+919999999999'
    assert message['from_'] == '+15005550006'
    assert message['credentials'] == ('AC123', 'secret')
    assert '123456' in message['body']


def test_unconfigured_twilio_falls_back_to_log(twilio, monkeypatch, caplog):
    monkeypatch.setattr(notifications, 'TWILIO_AUTH_TOKEN', None)

    with caplog.at_level('WARNING', logger='notifications'):
        assert notifications.send_sms('+919999999999', 'code 654321') is True

    assert twilio.sent == []
    assert 'code 654321' in caplog.text


def test_twilio_failure_is_reported_not_raised(twilio, monkeypatch):
    def rejected(self, body, from_, to):
        raise TwilioException('invalid number')

    monkeypatch.setattr(FakeTwilioClient, 'create', rejected)

    assert notifications.send_sms('+10000000000', 'hello') is False


def test_unknown_provider_sends_nothing(twilio, monkeypatch):
    monkeypatch.setattr(notifications, 'SMS_PROVIDER', 'carrier-pigeon')

    assert notifications.send_sms('+919999999999', 'hello') is False
    assert twilio.sent == []


def test_email_without_smtp_is_logged(monkeypatch, caplog):
    monkeypatch.setattr(notifications, 'SMTP_HOST', None)

    with caplog.at_level('WARNING', logger='notifications'):
        assert notifications.send_email_otp('a@college.edu', '111222') is False

    assert '111222' in caplog.text
