from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from tapebf import InputMode, VisualizerSession, lex
from tapebf.webui import SessionStore, create_app
from tapebf.webui.app import estimate_total_steps


class WebUISessionApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = SessionStore()
        self.client = TestClient(create_app(self.store))

    def _create_session(self, *, code: str = ".", **payload):
        body = {"code": code}
        body.update(payload)
        response = self.client.post("/api/session", json=body)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def test_create_session_returns_initial_state(self) -> None:
        data = self._create_session(code="+ comment .", input="A")
        self.assertIn("session_id", data)
        self.assertEqual(data["program"], "+.")
        self.assertEqual(data["input_mode"], "byte")
        self.assertEqual(data["state"]["step"], 0)
        self.assertEqual(data["state"]["code_length"], 2)
        self.assertIsNone(data["state"]["location"])
        self.assertFalse(data["finished"])
        self.assertIsNone(data["error"])
        self.assertEqual(data["total_steps"], 2)
        self.assertFalse(data["total_steps_capped"])

    def test_create_session_rejects_unmatched_bracket(self) -> None:
        response = self.client.post("/api/session", json={"code": "+\n]"})
        self.assertEqual(response.status_code, 422, response.text)
        self.assertIn("UnmatchedJumpBackwardError at line 2, column 1", response.json()["detail"])

    def test_create_session_rejects_unknown_input_mode(self) -> None:
        response = self.client.post("/api/session", json={"code": "+", "input_mode": "word"})
        self.assertEqual(response.status_code, 422, response.text)

    def test_infinite_program_total_steps_capped(self) -> None:
        data = self._create_session(code="+[]")
        self.assertTrue(data["total_steps_capped"])

    def test_program_finishing_exactly_at_cap_is_not_capped(self) -> None:
        data = self._create_session(code="+" * 10000)
        self.assertEqual(data["total_steps"], 10000)
        self.assertFalse(data["total_steps_capped"])

    def test_step_advances_state(self) -> None:
        data = self._create_session(code="++.")
        session_id = data["session_id"]

        response = self.client.post(
            f"/api/session/{session_id}/step", json={"count": 2}
        )
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(len(payload["states"]), 2)
        self.assertEqual(payload["states"][0]["step"], 1)
        self.assertEqual(payload["states"][0]["instruction"], "+")
        self.assertEqual(payload["states"][1]["location"], {"line": 1, "column": 2})
        self.assertEqual(payload["history"][-1]["step"], payload["states"][-1]["step"])
        self.assertFalse(payload["finished"])

    def test_reset_restores_initial_state(self) -> None:
        data = self._create_session(code="+.")
        session_id = data["session_id"]
        self.client.post(f"/api/session/{session_id}/step", json={"count": 1})

        response = self.client.post(f"/api/session/{session_id}/reset")
        self.assertEqual(response.status_code, 200, response.text)
        reset_payload = response.json()
        self.assertEqual(reset_payload["state"]["step"], 0)
        self.assertEqual(len(reset_payload["history"]), 1)
        self.assertFalse(reset_payload["finished"])

    def test_reset_clears_breakpoints(self) -> None:
        data = self._create_session(code="+++")
        session_id = data["session_id"]

        add = self.client.post(f"/api/session/{session_id}/breakpoints", json={"pc": 1})
        self.assertEqual(add.status_code, 200, add.text)

        reset = self.client.post(f"/api/session/{session_id}/reset")
        self.assertEqual(reset.status_code, 200, reset.text)
        self.assertEqual(reset.json()["breakpoints"], [])

    def test_step_limit_conflict(self) -> None:
        data = self._create_session(code="++", max_steps=1)
        session_id = data["session_id"]

        ok = self.client.post(f"/api/session/{session_id}/step", json={"count": 1})
        self.assertEqual(ok.status_code, 200, ok.text)

        conflict = self.client.post(
            f"/api/session/{session_id}/step",
            json={"count": 1},
        )
        self.assertEqual(conflict.status_code, 409, conflict.text)
        self.assertIn("detail", conflict.json())

    def test_pointer_error_conflict(self) -> None:
        data = self._create_session(code="<")
        session_id = data["session_id"]

        conflict = self.client.post(f"/api/session/{session_id}/run", json={})
        self.assertEqual(conflict.status_code, 409, conflict.text)
        self.assertIn("PointerError at line 1, column 1", conflict.json()["detail"])

        state = self.client.get(f"/api/session/{session_id}").json()
        self.assertTrue(state["finished"])
        self.assertIn("PointerError", state["error"])

    def test_input_is_fed_to_program(self) -> None:
        data = self._create_session(code=",.,.", input="ok")
        session_id = data["session_id"]
        response = self.client.post(f"/api/session/{session_id}/run", json={})
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["states"][-1]["output"], "ok")

    def test_line_input_mode(self) -> None:
        data = self._create_session(code=",.,.", input="ab\ncd\n", input_mode="line")
        self.assertEqual(data["input_mode"], "line")
        response = self.client.post(f"/api/session/{data['session_id']}/run", json={})
        self.assertEqual(response.json()["states"][-1]["output"], "ac")

    def test_add_and_remove_breakpoint(self) -> None:
        data = self._create_session(code="+++")
        session_id = data["session_id"]

        added = self.client.post(
            f"/api/session/{session_id}/breakpoints",
            json={"pc": 1},
        )
        self.assertEqual(added.status_code, 200, added.text)
        self.assertEqual(
            added.json()["breakpoints"],
            [{"pc": 1, "location": {"line": 1, "column": 2}}],
        )

        removed = self.client.delete(f"/api/session/{session_id}/breakpoints/1")
        self.assertEqual(removed.status_code, 200, removed.text)
        self.assertEqual(removed.json()["breakpoints"], [])

        missing = self.client.delete(f"/api/session/{session_id}/breakpoints/1")
        self.assertEqual(missing.status_code, 404, missing.text)

    def test_breakpoint_by_source_line(self) -> None:
        data = self._create_session(code="setup ++\n\nloop [-]\n")
        session_id = data["session_id"]

        added = self.client.post(f"/api/session/{session_id}/breakpoints", json={"line": 2})
        self.assertEqual(added.status_code, 200, added.text)
        self.assertEqual(
            added.json()["breakpoints"],
            [{"pc": 2, "location": {"line": 3, "column": 6}}],
        )

        response = self.client.post(f"/api/session/{session_id}/run", json={})
        payload = response.json()
        self.assertEqual(payload["hit_breakpoint"], 2)
        self.assertEqual(payload["next_location"], {"line": 3, "column": 6})
        self.assertEqual(payload["state"]["tape"], [2])

    def test_breakpoint_target_is_validated(self) -> None:
        data = self._create_session(code="+\n+")
        session_id = data["session_id"]
        url = f"/api/session/{session_id}/breakpoints"
        self.assertEqual(self.client.post(url, json={}).status_code, 422)
        self.assertEqual(self.client.post(url, json={"pc": 2}).status_code, 422)
        self.assertEqual(self.client.post(url, json={"line": 2, "column": 5}).status_code, 422)
        self.assertEqual(self.client.post(url, json={"line": 0}).status_code, 422)

    def test_run_until_break_hits_breakpoint(self) -> None:
        data = self._create_session(code="+.+")
        session_id = data["session_id"]
        self.client.post(f"/api/session/{session_id}/breakpoints", json={"pc": 1})

        response = self.client.post(f"/api/session/{session_id}/run", json={"limit": 10})
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(payload["hit_breakpoint"], 1)
        self.assertEqual(payload["next_location"], {"line": 1, "column": 2})
        self.assertFalse(payload["finished"])

    def test_run_to_completion_ignore_breakpoints(self) -> None:
        data = self._create_session(code="+.+")
        session_id = data["session_id"]
        self.client.post(f"/api/session/{session_id}/breakpoints", json={"pc": 1})

        response = self.client.post(
            f"/api/session/{session_id}/run",
            json={"limit": 10000, "ignore_breakpoints": True},
        )
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertTrue(payload["finished"])
        self.assertIsNone(payload["next_location"])
        self.assertEqual([point["pc"] for point in payload["breakpoints"]], [1])
        self.assertEqual(payload["total_steps"], payload["history"][-1]["step"])

    def test_unknown_session_returns_404(self) -> None:
        self.assertEqual(self.client.get("/api/session/nope").status_code, 404)
        self.assertEqual(
            self.client.post("/api/session/nope/step", json={"count": 1}).status_code,
            404,
        )
        self.assertEqual(self.client.post("/api/session/nope/reset").status_code, 404)

    def test_delete_session(self) -> None:
        data = self._create_session(code="+")
        session_id = data["session_id"]
        response = self.client.delete(f"/api/session/{session_id}")
        self.assertEqual(response.status_code, 204)
        self.assertEqual(self.client.get(f"/api/session/{session_id}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/session/{session_id}").status_code, 404)


class EstimateTotalStepsTests(unittest.TestCase):
    def test_counts_every_instruction(self) -> None:
        self.assertEqual(estimate_total_steps(lex("++[-]"), b"", InputMode.BYTE), (8, False))

    def test_cap_boundary(self) -> None:
        self.assertEqual(estimate_total_steps(lex("+++"), b"", InputMode.BYTE, cap=3), (3, False))
        self.assertEqual(estimate_total_steps(lex("++++"), b"", InputMode.BYTE, cap=3), (3, True))

    def test_failing_program_counts_steps_before_failure(self) -> None:
        self.assertEqual(estimate_total_steps(lex("+.<<"), b"", InputMode.BYTE), (2, False))
        self.assertEqual(estimate_total_steps(lex(",.,"), b"A", InputMode.BYTE), (2, False))


class SessionStoreTests(unittest.TestCase):
    def test_least_recently_used_session_is_evicted(self) -> None:
        store = SessionStore(max_sessions=2)
        first = store.add(VisualizerSession("+"))
        second = store.add(VisualizerSession("-"))
        store.get(first.session_id)
        third = store.add(VisualizerSession("."), total_steps=2)

        self.assertEqual(len(store), 2)
        self.assertIn(first.session_id, store)
        self.assertNotIn(second.session_id, store)
        self.assertEqual(store.get(third.session_id).total_steps, 2)
        with self.assertRaises(KeyError):
            store.get(second.session_id)

    def test_evicted_session_is_gone_from_api(self) -> None:
        client = TestClient(create_app(SessionStore(max_sessions=1)))
        first = client.post("/api/session", json={"code": "+"}).json()
        client.post("/api/session", json={"code": "-"})
        self.assertEqual(client.get(f"/api/session/{first['session_id']}").status_code, 404)


class WebUIStaticTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        static_dir = Path(self._tmp.name)
        (static_dir / "index.html").write_text("<h1>tapebf debugger</h1>", encoding="utf-8")
        (static_dir / "main.js").write_text("console.log('ready');", encoding="utf-8")
        self.client = TestClient(create_app(static_dir=static_dir))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_serves_index_html(self) -> None:
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200, response.text)
        self.assertIn("tapebf debugger", response.text)

    def test_serves_static_asset(self) -> None:
        response = self.client.get("/static/main.js")
        self.assertEqual(response.status_code, 200)
        self.assertIn("ready", response.text)


if __name__ == "__main__":
    unittest.main()
