from tokens import TokenService, bearer_token


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_issue_and_verify():
    clock = FakeClock()
    service = TokenService("s3cret", ttl_seconds=60, clock=clock)
    claims = service.verify(service.issue("alice"))
    assert claims is not None
    assert claims.user_id == "alice"
    assert claims.expires_at == int((clock.now + 60) * 1000)


def test_tokens_are_unique_per_issue():
    service = TokenService("s3cret", ttl_seconds=60)
    assert service.issue("alice") != service.issue("alice")


def test_expiry_is_exclusive():
    clock = FakeClock()
    service = TokenService("s3cret", ttl_seconds=60, clock=clock)
    start = clock.now
    token = service.issue("alice")
    clock.now = start + 59
    assert service.verify(token) is not None
    clock.now = start + 60
    assert service.verify(token) is None
    clock.now = start + 3600
    assert service.verify(token) is None


def test_tampered_signature_is_rejected():
    service = TokenService("s3cret", ttl_seconds=60)
    payload, signature = service.issue("alice").split(".")
    i = len(signature) // 2
    flipped = "A" if signature[i] != "A" else "B"
    tampered = f"{payload}.{signature[:i]}{flipped}{signature[i + 1:]}"
    assert service.verify(tampered) is None


def test_other_secret_is_rejected():
    token = TokenService("one", ttl_seconds=60).issue("alice")
    assert TokenService("two", ttl_seconds=60).verify(token) is None


def test_malformed_tokens_are_rejected():
    service = TokenService("s3cret", ttl_seconds=60)
    payload, signature = service.issue("alice").split(".")
    for bad in [
        None,
        "",
        "abc",
        f"{payload}.",
        f".{signature}",
        f"{payload}.{signature}.extra",
        f"{payload}.{signature[:-4]}",
        f"{payload}!.{signature}",
    ]:
        assert service.verify(bad) is None


def test_bearer_token_parsing():
    assert bearer_token("Bearer abc.def") == "abc.def"
    assert bearer_token("bearer   abc.def ") == "abc.def"
    assert bearer_token("Basic abc") is None
    assert bearer_token("Bearer ") is None
    assert bearer_token(None) is None
