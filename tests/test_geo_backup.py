"""Geography snapshot backup/restore."""
import json

import pytest
from sqlalchemy.exc import IntegrityError

from app.apc import create_app
from app.apc.db import session_scope
from app.apc.models import Base
from app.apc.modules.geografia.backup import (
    SnapshotError,
    dump_geography,
    read_snapshot,
    restore_geography,
    validate_snapshot,
)
from app.apc.modules.geografia.models import Comuna, Direccion, Pais, Provincia, Region
from scripts.backup_geo import run_backup
from scripts.restore_geo import main as restore_main
from scripts.restore_geo import run_restore


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        s.add(Pais(id="pais-cl", nombre="Chile"))
        s.add(Region(id="region-rm", nombre="Metropolitana", pais_id="pais-cl"))
        s.add(Region(id="region-v", nombre="Valparaíso", pais_id="pais-cl"))
        s.add(Provincia(id="prov-stgo", nombre="Santiago", region_id="region-rm"))
        s.add(Comuna(id="comuna-prov", nombre="Providencia", provincia_id="prov-stgo"))
        s.add(Comuna(id="comuna-nunoa", nombre="Ñuñoa", provincia_id="prov-stgo"))
    return app


def _counts(app):
    with session_scope(app) as s:
        return {model.__tablename__: s.query(model).count() for model in (Pais, Region, Provincia, Comuna)}


def test_dump_contains_every_table(app):
    with session_scope(app) as s:
        snapshot = dump_geography(s)
    assert [r["id"] for r in snapshot["paises"]] == ["pais-cl"]
    assert len(snapshot["regiones"]) == 2
    assert snapshot["comunas"][0]["provincia_id"] == "prov-stgo"
    assert isinstance(snapshot["paises"][0]["created_at"], str)
    json.dumps(snapshot)


def test_restore_replaces_tables(app):
    with session_scope(app) as s:
        snapshot = dump_geography(s)

    with session_scope(app) as s:
        s.add(Comuna(id="comuna-extra", nombre="Temporal", provincia_id="prov-stgo"))
        s.get(Comuna, "comuna-prov").nombre = "Renombrada"

    counts = restore_geography(app.extensions["sqlalchemy_sessionmaker"], snapshot)
    assert counts == {"paises": 1, "regiones": 2, "provincias": 1, "comunas": 2}

    with session_scope(app) as s:
        assert s.get(Comuna, "comuna-extra") is None
        assert s.get(Comuna, "comuna-prov").nombre == "Providencia"
        assert s.get(Region, "region-v").pais_id == "pais-cl"


def test_restore_blocked_by_direcciones_leaves_tables_untouched(app):
    with session_scope(app) as s:
        snapshot = dump_geography(s)
        s.add(Direccion(calle="Los Leones", numero="100", comuna_id="comuna-prov"))

    with pytest.raises(IntegrityError):
        restore_geography(app.extensions["sqlalchemy_sessionmaker"], snapshot)
    assert _counts(app) == {"paises": 1, "regiones": 2, "provincias": 1, "comunas": 2}


def test_restore_rejects_invalid_snapshot_before_deleting(app):
    with pytest.raises(SnapshotError):
        restore_geography(app.extensions["sqlalchemy_sessionmaker"], {"paises": []})
    assert _counts(app)["comunas"] == 2


def test_scripts_round_trip(app, tmp_path):
    db_url = app.config["DATABASE_URL"]
    out = tmp_path / "backup" / "geo.json"

    counts = run_backup(out, database_url=db_url)
    assert counts == {"paises": 1, "regiones": 2, "provincias": 1, "comunas": 2}
    assert read_snapshot(out)["provincias"][0]["nombre"] == "Santiago"

    with session_scope(app) as s:
        s.add(Pais(id="pais-ar", nombre="Argentina"))

    run_restore(out, database_url=db_url)
    assert _counts(app)["paises"] == 1


def test_read_snapshot_rejects_malformed_json(tmp_path):
    bad = tmp_path / "geo.json"
    bad.write_text('{"paises": [', encoding="utf-8")
    with pytest.raises(SnapshotError, match="not valid JSON"):
        read_snapshot(bad)


def test_restore_script_exits_cleanly_on_malformed_json(app, tmp_path, monkeypatch, capsys):
    bad = tmp_path / "geo.json"
    bad.write_text("esto no es json", encoding="utf-8")
    monkeypatch.setattr("sys.argv", ["restore_geo.py", "--input", str(bad), "--yes"])

    with pytest.raises(SystemExit) as exc:
        restore_main()
    assert exc.value.code == 1
    assert "ERROR: invalid snapshot" in capsys.readouterr().out
    assert _counts(app)["comunas"] == 2


class TestValidateSnapshot:
    def test_accepts_empty_tables(self):
        validate_snapshot({"paises": [], "regiones": [], "provincias": [], "comunas": []})

    def test_rejects_non_object(self):
        with pytest.raises(SnapshotError):
            validate_snapshot([])

    def test_rejects_missing_table(self):
        with pytest.raises(SnapshotError, match="comunas"):
            validate_snapshot({"paises": [], "regiones": [], "provincias": []})

    def test_rejects_row_without_nombre(self):
        with pytest.raises(SnapshotError):
            validate_snapshot({"paises": [{"id": "x"}], "regiones": [], "provincias": [], "comunas": []})
