import json
import os

import pytest

from destination_proxy.binding.artifact import (
    DestinationBinding,
    build_env,
    find_env_files,
    load_env_files,
    write_env,
)


def parse_env(text: str) -> dict:
    return dict(line.split("=", 1) for line in text.split("\n"))


class TestDestinationBinding:
    def test_routing_fields(self):
        binding = DestinationBinding(name="billing", proxy_host="http://127.0.0.1", proxy_port=8887)

        assert binding.to_dict() == {
            "name": "billing",
            "url": "http://billing.dest",
            "proxyHost": "http://127.0.0.1",
            "proxyPort": 8887,
        }

    def test_catalog_attributes_are_passed_through(self):
        binding = DestinationBinding.from_catalog_entry(
            {"Name": "crm", "Type": "HTTP", "ProxyType": "OnPremise"},
            "http://127.0.0.1",
            9000,
        )

        data = binding.to_dict()
        assert data["name"] == "crm"
        assert data["Type"] == "HTTP"
        assert data["ProxyType"] == "OnPremise"
        assert "Name" not in data

    def test_catalog_attributes_never_override_routing_fields(self):
        binding = DestinationBinding(
            name="crm",
            proxy_host="http://127.0.0.1",
            proxy_port=9000,
            extra={"url": "https://crm.internal", "proxyPort": 1},
        )

        data = binding.to_dict()
        assert data["url"] == "http://crm.dest"
        assert data["proxyPort"] == 9000


class TestBuildEnv:
    def test_three_variables(self, uaa_credentials):
        destinations = [
            DestinationBinding(name="billing", proxy_host="http://127.0.0.1", proxy_port=8887),
            DestinationBinding(name="crm", proxy_host="http://127.0.0.1", proxy_port=8887),
        ]

        env = build_env(uaa_credentials, destinations, "https://backend.example.com", "my-uaa")

        variables = parse_env(env)
        assert list(variables) == ["VCAP_SERVICES", "destinations", "CFDP_TARGET"]
        assert variables["CFDP_TARGET"] == "https://backend.example.com"

        vcap = json.loads(variables["VCAP_SERVICES"])
        assert vcap == {
            "xsuaa": [
                {
                    "label": "xsuaa",
                    "plan": "broker",
                    "name": "my-uaa",
                    "tags": ["xsuaa"],
                    "credentials": uaa_credentials,
                }
            ]
        }
        assert [d["url"] for d in json.loads(variables["destinations"])] == [
            "http://billing.dest",
            "http://crm.dest",
        ]

    def test_no_trailing_newline(self, uaa_credentials):
        env = build_env(uaa_credentials, [], "https://backend.example.com", "my-uaa")
        assert not env.endswith("\n")
        assert "destinations=[]" in env


class TestWriteEnv:
    def test_first_artifact_is_dot_env(self, tmp_path):
        path = write_env("A=1", tmp_path)

        assert path == tmp_path / ".env"
        assert path.read_text() == "A=1"

    def test_existing_artifacts_are_never_overwritten(self, tmp_path):
        written = [write_env(f"RUN={i}", tmp_path) for i in range(4)]

        assert [p.name for p in written] == [".env", ".1.env", ".2.env", ".3.env"]
        for i, path in enumerate(written):
            assert path.read_text() == f"RUN={i}"

    def test_gap_in_suffixes_is_filled(self, tmp_path):
        (tmp_path / ".env").write_text("old")
        (tmp_path / ".2.env").write_text("older")

        path = write_env("new", tmp_path)

        assert path.name == ".1.env"
        assert (tmp_path / ".env").read_text() == "old"
        assert (tmp_path / ".2.env").read_text() == "older"

    def test_missing_directory_raises_os_error(self, tmp_path):
        with pytest.raises(OSError):
            write_env("A=1", tmp_path / "missing")


class TestLoadEnvFiles:
    def test_only_artifacts_are_found_newest_first(self, tmp_path):
        for name in (".env", ".1.env", ".10.env", ".2.env", "other.env", ".env.local"):
            (tmp_path / name).write_text("")

        names = [p.name for p in find_env_files(tmp_path)]

        assert names == [".10.env", ".2.env", ".1.env", ".env"]

    def test_newest_artifact_wins(self, tmp_path, clean_binding_env):
        (tmp_path / ".env").write_text("CFDP_TARGET=https://old.example.com")
        (tmp_path / ".1.env").write_text("CFDP_TARGET=https://new.example.com")

        load_env_files(tmp_path)

        assert os.environ["CFDP_TARGET"] == "https://new.example.com"

    def test_process_environment_wins(self, tmp_path, clean_binding_env):
        os.environ["CFDP_TARGET"] = "https://explicit.example.com"
        (tmp_path / ".env").write_text("CFDP_TARGET=https://file.example.com")

        load_env_files(tmp_path)

        assert os.environ["CFDP_TARGET"] == "https://explicit.example.com"

    def test_written_artifact_round_trips_through_dotenv(
        self, tmp_path, uaa_credentials, clean_binding_env
    ):
        destinations = [DestinationBinding(name="billing", proxy_host="http://127.0.0.1", proxy_port=8887)]
        write_env(build_env(uaa_credentials, destinations, "https://backend.example.com", "my-uaa"), tmp_path)

        load_env_files(tmp_path)

        vcap = json.loads(os.environ["VCAP_SERVICES"])
        assert vcap["xsuaa"][0]["credentials"]["verificationkey"] == uaa_credentials["verificationkey"]
        assert json.loads(os.environ["destinations"])[0]["name"] == "billing"

    def test_empty_directory(self, tmp_path):
        assert load_env_files(tmp_path) == []
