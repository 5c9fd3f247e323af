import smtplib

import mailer


class FakeSMTP:
    sent = []

    def __init__(self, host, port):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        self.user = user

    def send_message(self, msg):
        FakeSMTP.sent.append(msg)


def test_contact_relays_message(client, monkeypatch):
    FakeSMTP.sent = []
    monkeypatch.setenv("USER_EMAIL", "shop@polliahaar.com")
    monkeypatch.setenv("USER_PASS", "app-password")
    monkeypatch.setattr(mailer.smtplib, "SMTP", FakeSMTP)

    res = client.post("/email", json={"name": "Karim", "email": "karim@gmail.com", "message": "Do you deliver to Sylhet?"})
    assert res.status_code == 200
    assert res.json()["message"].startswith("Message received")

    msg = FakeSMTP.sent[0]
    assert msg["To"] == "shop@polliahaar.com"
    assert msg["Reply-To"] == "karim@gmail.com"
    assert msg["Subject"] == "New Message from Karim"
    assert "Do you deliver to Sylhet?" in msg.get_content()


def test_contact_without_relay(client, monkeypatch):
    monkeypatch.delenv("USER_EMAIL", raising=False)
    monkeypatch.delenv("USER_PASS", raising=False)
    res = client.post("/email", json={"name": "Karim", "email": "karim@gmail.com", "message": "Hi"})
    assert res.status_code == 503


def test_contact_send_failure(client, monkeypatch):
    class Broken(FakeSMTP):
        def login(self, user, password):
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    monkeypatch.setenv("USER_EMAIL", "shop@polliahaar.com")
    monkeypatch.setenv("USER_PASS", "wrong")
    monkeypatch.setattr(mailer.smtplib, "SMTP", Broken)
    res = client.post("/email", json={"name": "Karim", "email": "karim@gmail.com", "message": "Hi"})
    assert res.status_code == 500
    assert res.json() == {"message": "Failed to send message"}
