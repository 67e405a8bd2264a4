import re

import pytest

from droprunner.errors import ConfigError
from droprunner.fingerprint import compute_fingerprint

pytestmark = [pytest.mark.unit]

RSA_KEY = (
    b"ssh-rsa AAAAB3NzaC1yc2EAAAABIwAAAQEAklOUpkDHrfHY17SbrmTIpNLTGK9Tjom/BWDSU"
    b"GPl+nafzlHDTYW7hdI4yZ5ew18JH4JW9jbhUFrviQzM7xlELEVf4h9lFX5QVkbPppSwg0cda3"
    b"Pbv7kOdJ/MTyBlWXFCR+HAo3FXRitBqxiX1nKhXpHAZsMciLq8V6RjsNAQwdsdMFvSlVK/7XA"
    b"t3FaoJoAsncM1Q9x5+3V0Ww68/eIFmb1zuUFljQJKprrX88XypNDvjYNby6vw/Pb0rwert/En"
    b"mZ+AW4OZPnTPI89ZPmVMLuayrD2cE86Z/il8b+gw3r3+1nKatmIkjn2so1d01QraTlMqVSsbx"
    b"NrRFi9wrf+M7Q=="
)


class TestComputeFingerprint:
    def test_known_rsa_key(self):
        assert compute_fingerprint(RSA_KEY) == "43:c5:5b:5f:b1:f1:50:43:ad:20:a6:92:6a:1f:9a:3a"

    def test_accepts_text_with_comment(self):
        text = RSA_KEY.decode() + " ci@example.com\n"
        assert compute_fingerprint(text) == compute_fingerprint(RSA_KEY)

    def test_format_is_sixteen_lowercase_octets(self, keypair):
        public, _ = keypair
        fingerprint = compute_fingerprint(public)
        assert re.fullmatch(r"[0-9a-f]{2}(:[0-9a-f]{2}){15}", fingerprint)

    def test_deterministic(self, keypair):
        public, _ = keypair
        assert compute_fingerprint(public) == compute_fingerprint(public.encode())

    @pytest.mark.parametrize("data", [b"", b"not a key", b"ssh-rsa !!!notbase64!!!"])
    def test_invalid_key_raises_config_error(self, data):
        with pytest.raises(ConfigError):
            compute_fingerprint(data)
