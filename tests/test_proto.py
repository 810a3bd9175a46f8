"""Tests for protocol snapshot regeneration and API stub generation."""

import json

import pytest

from devloop.api import generate_api_stubs
from devloop.proto import RegenerationError, load_prior_snapshot, regenerate_schema
from devloop_core.models import ProtoConfigItem


@pytest.fixture
def item(tmp_path):
    ptl_dir = tmp_path / "protocols"
    (ptl_dir / "user").mkdir(parents=True)
    (ptl_dir / "PtlHello.py").write_text("class ReqHello: ...\n")
    (ptl_dir / "MsgChat.py").write_text("class MsgChat: ...\n")
    (ptl_dir / "user" / "PtlLogin.py").write_text("class ReqLogin: ...\n")
    (ptl_dir / "helpers.py").write_text("")
    return ProtoConfigItem(ptl_dir=ptl_dir, output=ptl_dir / "service_proto.json", api_dir=tmp_path / "api")


class TestSnapshots:
    """load_prior_snapshot / regenerate_schema."""

    def test_no_prior_snapshot(self, item):
        assert load_prior_snapshot(item) is None

    def test_unreadable_prior_snapshot(self, item):
        item.output.write_text("{not json")
        assert load_prior_snapshot(item) is None

    def test_first_generation(self, item):
        schema = regenerate_schema(item, None)

        assert schema["version"] == 1
        names = {s["name"]: s for s in schema["services"]}
        assert set(names) == {"Hello", "Chat", "user/Login"}
        assert names["Chat"]["type"] == "msg"
        assert names["user/Login"]["source"] == "user/PtlLogin.py"
        assert sorted(s["id"] for s in schema["services"]) == [0, 1, 2]
        assert json.loads(item.output.read_text()) == schema
        assert load_prior_snapshot(item) == schema

    def test_ids_are_stable_and_new_services_append(self, item):
        first = regenerate_schema(item, None)
        ids = {s["name"]: s["id"] for s in first["services"]}
        (item.ptl_dir / "PtlAbc.py").write_text("class ReqAbc: ...\n")

        second = regenerate_schema(item, first)

        second_ids = {s["name"]: s["id"] for s in second["services"]}
        assert {k: second_ids[k] for k in ids} == ids
        assert second_ids["Abc"] == 3
        assert second["version"] == 2

    def test_unchanged_sources_keep_version(self, item):
        first = regenerate_schema(item, None)
        mtime = item.output.stat().st_mtime_ns

        second = regenerate_schema(item, first)

        assert second == first
        assert item.output.stat().st_mtime_ns == mtime

    def test_output_file_is_not_a_source(self, item):
        schema = regenerate_schema(item, None)
        assert all(s["source"] != "service_proto.json" for s in schema["services"])

    def test_missing_directory(self, tmp_path):
        item = ProtoConfigItem(ptl_dir=tmp_path / "missing", output=tmp_path / "out.json")
        with pytest.raises(RegenerationError, match="not found"):
            regenerate_schema(item, None)

    def test_duplicate_service(self, item):
        (item.ptl_dir / "PtlHello.ts").write_text("export interface ReqHello {}\n")
        with pytest.raises(RegenerationError, match="Duplicate service 'Hello'"):
            regenerate_schema(item, None)
        assert not item.output.exists()

    def test_binary_source(self, item):
        (item.ptl_dir / "PtlBroken.py").write_bytes(b"\xff\xfe\x00garbage")
        with pytest.raises(RegenerationError, match="not UTF-8"):
            regenerate_schema(item, None)

    def test_ignore_patterns(self, tmp_path, item):
        ignoring = ProtoConfigItem(ptl_dir=item.ptl_dir, output=item.output, ignore=["user/*"])
        schema = regenerate_schema(ignoring, None)
        assert "user/Login" not in {s["name"] for s in schema["services"]}


class TestApiStubs:
    """generate_api_stubs."""

    def test_writes_stubs_for_api_services(self, item):
        schema = regenerate_schema(item, None)

        written = generate_api_stubs(schema, item.ptl_dir, item.api_dir)

        assert sorted(p.relative_to(item.api_dir).as_posix() for p in written) == [
            "ApiHello.py",
            "user/ApiLogin.py",
        ]
        content = (item.api_dir / "user" / "ApiLogin.py").read_text()
        assert "async def api_login(call):" in content
        assert "user/Login" in content

    def test_existing_handlers_are_not_overwritten(self, item):
        schema = regenerate_schema(item, None)
        item.api_dir.mkdir()
        (item.api_dir / "ApiHello.py").write_text("# implemented\n")

        written = generate_api_stubs(schema, item.ptl_dir, item.api_dir)

        assert (item.api_dir / "ApiHello.py").read_text() == "# implemented\n"
        assert [p.name for p in written] == ["ApiLogin.py"]

    def test_typescript_stub_imports_protocol(self, tmp_path):
        ptl_dir = tmp_path / "shared" / "protocols"
        (ptl_dir / "user").mkdir(parents=True)
        (ptl_dir / "user" / "PtlGetProfile.ts").write_text("export interface ReqGetProfile {}\n")
        item = ProtoConfigItem(ptl_dir=ptl_dir, output=ptl_dir / "serviceProto.json")
        api_dir = tmp_path / "api"

        [stub] = generate_api_stubs(regenerate_schema(item, None), ptl_dir, api_dir)

        assert stub == api_dir / "user" / "ApiGetProfile.ts"
        content = stub.read_text()
        assert 'from "../../shared/protocols/user/PtlGetProfile"' in content
        assert "ApiCall<ReqGetProfile, ResGetProfile>" in content

    def test_unknown_extension_is_skipped(self, tmp_path):
        schema = {"services": [{"id": 0, "name": "Ping", "type": "api", "source": "PtlPing.proto", "hash": ""}]}
        assert generate_api_stubs(schema, tmp_path, tmp_path / "api") == []
