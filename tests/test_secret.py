"""Tests for SecretMaterial and secure_zero."""

import copy
import pickle

import pytest

from passman.core.memory.secret import SecretMaterial, secure_zero


class TestSecureZero:
    def test_zeroes_bytearray(self):
        data = bytearray(b"sensitive")
        secure_zero(data)
        assert data == bytearray(len(b"sensitive"))

    def test_empty_bytearray(self):
        data = bytearray()
        secure_zero(data)
        assert data == bytearray()


class TestSecretMaterial:
    def test_expose_returns_contents(self):
        """The exposed view holds exactly the stored bytes."""
        secret = SecretMaterial(b"s3cr3t!")
        with secret.expose() as view:
            assert bytes(view) == b"s3cr3t!"
        assert len(secret) == 7

    def test_exposed_view_is_read_only(self):
        secret = SecretMaterial(b"abc")
        with secret.expose() as view:
            with pytest.raises(TypeError):
                view[0] = 0

    def test_view_released_after_block(self):
        secret = SecretMaterial(b"abc")
        with secret.expose() as view:
            pass
        with pytest.raises(ValueError):
            bytes(view)

    def test_bytearray_source_is_zeroed(self):
        """Ownership of a bytearray moves into the holder."""
        source = bytearray(b"password")
        secret = SecretMaterial(source)
        assert source == bytearray(8)
        with secret.expose() as view:
            assert bytes(view) == b"password"

    def test_from_text_utf8(self):
        secret = SecretMaterial.from_text("пароль")
        with secret.expose() as view:
            assert bytes(view).decode("utf-8") == "пароль"

    def test_random_length_and_uniqueness(self):
        first = SecretMaterial.random(32)
        second = SecretMaterial.random(32)
        assert len(first) == 32
        assert not first.equals(second)

    def test_empty_secret(self):
        secret = SecretMaterial(b"")
        assert len(secret) == 0
        with secret.expose() as view:
            assert bytes(view) == b""

    def test_wipe_is_idempotent(self):
        secret = SecretMaterial(b"abc")
        secret.wipe()
        secret.wipe()
        assert secret.is_wiped

    def test_expose_after_wipe_raises(self):
        secret = SecretMaterial(b"abc")
        secret.wipe()
        with pytest.raises(ValueError):
            with secret.expose():
                pass

    def test_wipe_zeroes_buffer(self):
        secret = SecretMaterial(b"abc")
        secret.wipe()
        assert secret._buffer == bytearray(len(secret._buffer))

    def test_context_manager_wipes_on_exit(self):
        with SecretMaterial(b"abc") as secret:
            assert not secret.is_wiped
        assert secret.is_wiped

    def test_context_manager_wipes_on_error(self):
        with pytest.raises(RuntimeError):
            with SecretMaterial(b"abc") as secret:
                raise RuntimeError("boom")
        assert secret.is_wiped

    def test_duplicate_is_independent(self):
        """Wiping a duplicate leaves the original intact."""
        original = SecretMaterial(b"key material")
        dup = original.duplicate()
        dup.wipe()
        assert not original.is_wiped
        with original.expose() as view:
            assert bytes(view) == b"key material"

    def test_equals(self):
        secret = SecretMaterial(b"abc")
        assert secret.equals(SecretMaterial(b"abc"))
        assert secret.equals(b"abc")
        assert not secret.equals(b"abd")

    def test_copy_refused(self):
        secret = SecretMaterial(b"abc")
        with pytest.raises(TypeError):
            copy.copy(secret)
        with pytest.raises(TypeError):
            copy.deepcopy(secret)

    def test_pickle_refused(self):
        with pytest.raises(TypeError):
            pickle.dumps(SecretMaterial(b"abc"))

    def test_repr_and_str_never_show_value(self):
        secret = SecretMaterial(b"hunter2")
        assert "hunter2" not in repr(secret)
        assert "hunter2" not in str(secret)
        assert "hunter2" not in f"{secret}"
        assert repr(secret) == "SecretMaterial(len=7)"
        secret.wipe()
        assert repr(secret) == "SecretMaterial(WIPED)"
