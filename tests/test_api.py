"""API tests for consensus and workspace routes (temporary store, no external services)."""

import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from app.core.config import DEFAULT_SUPPORTED_CHAINS, settings
from app.core.storage import get_store
from app.main import app
from app.services.workspace_store import WorkspaceStore

PREFIX = settings.API_V1_PREFIX


def _raw(source_line: int = 10, severity: str = "critical", **kwargs: object) -> dict[str, object]:
    raw: dict[str, object] = {
        "file": "Bank.sol",
        "lineStart": source_line,
        "severity": severity,
        "description": "Reentrancy in withdraw()",
    }
    raw.update(kwargs)
    return raw


class ApiTestCase(unittest.TestCase):

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.store = WorkspaceStore(self.root, DEFAULT_SUPPORTED_CHAINS)
        app.dependency_overrides[get_store] = lambda: self.store
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self._tmp.cleanup()


class TestHealth(ApiTestCase):

    def test_health_reports_writable_storage(self) -> None:
        resp = self.client.get(f"{PREFIX}/health/")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["storage"], "writable")


class TestConsensusEndpoint(ApiTestCase):

    def test_two_sources_without_pipeline_steps(self) -> None:
        resp = self.client.post(
            f"{PREFIX}/consensus",
            json={
                "findings_by_source": {"slither": [_raw()], "mythril": [_raw()], "echidna": []},
                "reduce_false_positives": False,
                "adjust_confidence": False,
            },
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(len(body["findings"]), 1)
        finding = body["findings"][0]
        self.assertEqual(finding["severity"], "critical")
        self.assertEqual(set(finding["contributing_tools"]), {"slither", "mythril"})
        self.assertEqual(finding["confidence_tier"], "medium")
        self.assertEqual(body["stats"]["total"], 1)
        self.assertEqual(body["filtered_out"], 0)

    def test_default_pipeline_filters_and_counts_rejects(self) -> None:
        resp = self.client.post(
            f"{PREFIX}/consensus",
            json={
                "findings_by_source": {
                    "slither": [_raw(), _raw(source_line=40, severity="low"), {"file": "Bank.sol"}],
                    "mythril": [_raw()],
                    "medusa": None,
                },
            },
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["rejected"], 1)
        self.assertEqual(body["filtered_out"], 1)
        self.assertEqual(len(body["findings"]), 1)
        self.assertEqual(body["findings"][0]["confidence_tier"], "high")
        self.assertEqual(body["confidence"]["total"], 1)
        self.assertEqual(body["confidence"]["multi_tool"], 1)


class TestWorkspaceEndpoints(ApiTestCase):

    def test_workspace_flow(self) -> None:
        resp = self.client.post(f"{PREFIX}/workspaces", json={"id": "w1", "chains": ["ethereum", "bnb"]})
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(set(resp.json()["chains"]), set(DEFAULT_SUPPORTED_CHAINS))

        resp = self.client.post(f"{PREFIX}/workspaces", json={"id": "w1"})
        self.assertEqual(resp.status_code, 409)

        resp = self.client.post(
            f"{PREFIX}/workspaces/w1/contracts",
            json={"address": "0xAA", "chain": "ethereum", "metadata": {"name": "Bank"}},
        )
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()[0]["metadata"], {"name": "Bank"})

        resp = self.client.post(
            f"{PREFIX}/workspaces/w1/contracts",
            json={"address": "0xBB", "chains": ["ethereum", "bnb"]},
        )
        self.assertEqual(len(resp.json()), 2)

        resp = self.client.post(
            f"{PREFIX}/workspaces/w1/vulnerabilities",
            json={"address": "0xAA", "chain": "ethereum", "vulnerabilities": [{"id": "v1"}, {"id": "v2"}]},
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["total_vulnerabilities"], 2)

        resp = self.client.post(
            f"{PREFIX}/workspaces/w1/findings",
            json={
                "address": "0xAA",
                "chain": "ethereum",
                "findings_by_source": {"slither": [_raw()], "mythril": [_raw()]},
            },
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["key"], "0xAA:ethereum")
        self.assertEqual(len(body["findings"]), 1)
        self.assertEqual(body["stats"]["total_vulnerabilities"], 1)
        self.assertEqual(body["stats"]["per_chain"]["ethereum"]["vulnerabilities"], 3)

        resp = self.client.post(
            f"{PREFIX}/workspaces/w1/reports",
            json={"address": "0xAA", "report": "# Bank audit\n"},
        )
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["key"], "0xAA:ethereum")
        self.assertTrue((self.root / "w1" / "ethereum" / "AA-report.md").is_file())

        resp = self.client.get(f"{PREFIX}/workspaces/w1/stats")
        self.assertEqual(resp.status_code, 200)
        stats = resp.json()
        self.assertEqual(stats["contracts"], 2)
        self.assertEqual(stats["reports"], 1)

        self.assertEqual(self.client.get(f"{PREFIX}/workspaces").json(), ["w1"])
        self.assertEqual(self.client.get(f"{PREFIX}/workspaces/w1").json()["id"], "w1")

        self.assertEqual(self.client.delete(f"{PREFIX}/workspaces/w1").status_code, 204)
        self.assertEqual(self.client.get(f"{PREFIX}/workspaces/w1/stats").status_code, 404)
        self.assertEqual(self.client.delete(f"{PREFIX}/workspaces/w1").status_code, 404)

    def test_error_mapping(self) -> None:
        resp = self.client.post(f"{PREFIX}/workspaces", json={"id": "bad id!"})
        self.assertEqual(resp.status_code, 422)

        resp = self.client.post(f"{PREFIX}/workspaces", json={"id": "w2", "chains": ["solana"]})
        self.assertEqual(resp.status_code, 404)

        resp = self.client.post(
            f"{PREFIX}/workspaces/missing/contracts",
            json={"address": "0xAA", "chain": "ethereum"},
        )
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(self.client.get(f"{PREFIX}/workspaces/missing").status_code, 404)

        self.client.post(f"{PREFIX}/workspaces", json={"id": "w3"})
        resp = self.client.post(
            f"{PREFIX}/workspaces/w3/contracts",
            json={"address": "   ", "chain": "ethereum"},
        )
        self.assertEqual(resp.status_code, 422)
        resp = self.client.post(
            f"{PREFIX}/workspaces/w3/reports",
            json={"address": "   ", "report": "body"},
        )
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(self.client.get(f"{PREFIX}/workspaces/bad!id/stats").status_code, 404)


if __name__ == "__main__":
    unittest.main()
