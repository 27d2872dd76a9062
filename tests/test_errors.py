import pytest
from sqlalchemy.exc import IntegrityError

from app.apc.errors import (
    ApiError,
    ConflictError,
    NotFoundError,
    ValidationFailed,
    integrity_error_kind,
    integrity_guard,
    validation_message,
)


class _PgError(Exception):
    def __init__(self, pgcode):
        super().__init__("constraint violation")
        self.pgcode = pgcode


class _FakeSession:
    rolled_back = False

    def rollback(self):
        self.rolled_back = True


def _integrity(orig):
    return IntegrityError("INSERT ...", {}, orig)


class TestIntegrityErrorKind:
    def test_postgres_codes(self):
        assert integrity_error_kind(_integrity(_PgError("23505"))) == "unique"
        assert integrity_error_kind(_integrity(_PgError("23503"))) == "foreign_key"

    def test_sqlite_messages(self):
        assert integrity_error_kind(_integrity(Exception("UNIQUE constraint failed: empresas.rut"))) == "unique"
        assert integrity_error_kind(_integrity(Exception("FOREIGN KEY constraint failed"))) == "foreign_key"

    def test_other_violations(self):
        assert integrity_error_kind(_integrity(Exception("NOT NULL constraint failed: tickets.titulo"))) is None


class TestIntegrityGuard:
    def test_unique_maps_to_conflict(self):
        s = _FakeSession()
        with pytest.raises(ConflictError) as exc:
            with integrity_guard(s, unique="Duplicado."):
                raise _integrity(_PgError("23505"))
        assert exc.value.message == "Duplicado."
        assert s.rolled_back

    def test_foreign_key_status(self):
        with pytest.raises(ApiError) as exc:
            with integrity_guard(_FakeSession(), foreign_key="Referencia inválida.", foreign_key_status=400):
                raise _integrity(_PgError("23503"))
        assert exc.value.status_code == 400

    def test_unmapped_is_reraised(self):
        s = _FakeSession()
        with pytest.raises(IntegrityError):
            with integrity_guard(s, unique="Duplicado."):
                raise _integrity(_PgError("23503"))
        assert s.rolled_back


class TestApiErrors:
    def test_status_codes(self):
        assert NotFoundError("x").status_code == 404
        assert ConflictError("x").status_code == 409
        assert ApiError("x", 418).status_code == 418

    def test_validation_failed_payload(self):
        err = ValidationFailed(["A es requerido.", "B inválido."])
        assert err.to_dict() == {
            "message": "Error de validación: A es requerido., B inválido.",
            "errors": ["A es requerido.", "B inválido."],
        }
        assert validation_message(["uno"]) == "Error de validación: uno"
