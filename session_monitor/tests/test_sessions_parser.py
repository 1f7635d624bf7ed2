import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from session_monitor.models import SessionStatus
from session_monitor.parsers.log_reader import read_log_entries
from session_monitor.parsers.sessions import (
    build_session_detail,
    extract_session,
    parse_session_detail,
    parse_session_file,
)

NOW = datetime(2026, 2, 16, 10, 10, 0, tzinfo=timezone.utc)


class SessionExtractorTests(unittest.TestCase):
    def _write_jsonl(self, lines: list[dict], relative_path: str = "7f3c-session.jsonl") -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(json.dumps(line) for line in lines), encoding="utf-8")
        return path

    def _conversation(self) -> list[dict]:
        return [
            {
                "type": "user",
                "timestamp": "2026-02-16T10:00:00Z",
                "uuid": "u1",
                "cwd": "/Users/dev/shop-api",
                "gitBranch": "feature/cart",
                "slug": "happy-cart",
                "message": {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "<command-name>/clear</command-name>"},
                        {"type": "text", "text": "Add a cart endpoint"},
                    ],
                },
            },
            {
                "type": "assistant",
                "timestamp": "2026-02-16T10:00:05Z",
                "uuid": "a1",
                "message": {
                    "role": "assistant",
                    "content": [
                        {"type": "thinking", "thinking": "Look at the router first."},
                        {"type": "text", "text": "I'll start by reading the router module."},
                        {"type": "tool_use", "id": "toolu_1", "name": "Read", "input": {"file_path": "api/router.py"}},
                    ],
                },
            },
            {
                "type": "user",
                "timestamp": "2026-02-16T10:00:06Z",
                "uuid": "u2",
                "message": {
                    "role": "user",
                    "content": [{"type": "tool_result", "tool_use_id": "toolu_1", "content": "def route(): ..."}],
                },
            },
            {
                "type": "assistant",
                "timestamp": "2026-02-16T10:00:09Z",
                "uuid": "a2",
                "message": {
                    "role": "assistant",
                    "content": [
                        {"type": "text", "text": "<system-reminder>be careful</system-reminder>"},
                        {"type": "text", "text": "Done."},
                        {"type": "tool_use", "id": "toolu_2", "name": "Bash", "input": {"command": "pytest"}},
                    ],
                },
            },
            {"type": "system", "timestamp": "2026-02-16T10:00:10Z", "subtype": "informational"},
        ]

    def test_session_summary_fields(self) -> None:
        path = self._write_jsonl(self._conversation())

        session = parse_session_file(path, "/fallback/root", now=NOW)

        self.assertIsNotNone(session)
        assert session is not None
        self.assertEqual(session.id, "7f3c-session")
        self.assertEqual(session.root_path, "/Users/dev/shop-api")
        self.assertEqual(session.display_name, "shop-api")
        self.assertEqual(session.started_at, datetime(2026, 2, 16, 10, 0, 0, tzinfo=timezone.utc))
        self.assertEqual(session.last_activity_at, datetime(2026, 2, 16, 10, 0, 10, tzinfo=timezone.utc))
        self.assertEqual(session.branch, "feature/cart")
        self.assertEqual(session.slug, "happy-cart")
        self.assertEqual(session.message_count, 4)
        self.assertEqual(session.tool_invocation_count, 2)
        self.assertEqual(session.first_prompt, "Add a cart endpoint")
        self.assertEqual(session.last_output, "I'll start by reading the router module.")
        self.assertEqual(session.log_file_path, str(path))
        self.assertEqual(session.log_file_size_bytes, path.stat().st_size)

    def test_status_comes_from_resolver(self) -> None:
        path = self._write_jsonl(self._conversation())

        working = parse_session_file(path, now=datetime(2026, 2, 16, 10, 1, tzinfo=timezone.utc))
        blocked = parse_session_file(path, now=NOW)
        idle = parse_session_file(path, now=NOW + timedelta(hours=2))

        self.assertEqual(working.status, SessionStatus.WORKING)
        self.assertEqual(blocked.status, SessionStatus.NEEDS_APPROVAL)
        self.assertTrue(blocked.has_pending_tool_use)
        self.assertEqual(idle.status, SessionStatus.IDLE)
        self.assertFalse(idle.has_pending_tool_use)

    def test_thresholds_can_be_overridden(self) -> None:
        path = self._write_jsonl(self._conversation())
        session = parse_session_file(path, now=NOW, working_timeout=timedelta(minutes=30))
        self.assertEqual(session.status, SessionStatus.WORKING)

    def test_no_message_entries_yields_no_session(self) -> None:
        path = self._write_jsonl(
            [
                {"type": "summary", "timestamp": "2026-02-16T10:00:00Z", "summary": "Old work"},
                {"type": "system", "timestamp": "2026-02-16T10:00:01Z"},
            ]
        )
        self.assertIsNone(parse_session_file(path, now=NOW))
        self.assertIsNone(extract_session(path, [], now=NOW))

    def test_falls_back_to_first_entry_and_folder_root(self) -> None:
        path = self._write_jsonl(
            [
                {"type": "summary", "timestamp": "2026-02-16T09:59:00Z"},
                {
                    "type": "assistant",
                    "timestamp": "2026-02-16T10:00:00Z",
                    "message": {"content": [{"type": "text", "text": "tiny"}]},
                },
            ]
        )

        session = parse_session_file(path, "/Users/dev/legacy", now=NOW)

        assert session is not None
        self.assertEqual(session.started_at, datetime(2026, 2, 16, 9, 59, tzinfo=timezone.utc))
        self.assertEqual(session.root_path, "/Users/dev/legacy")
        self.assertEqual(session.display_name, "legacy")
        self.assertIsNone(session.first_prompt)
        self.assertEqual(session.last_output, "")

    def test_prompt_and_output_are_truncated(self) -> None:
        path = self._write_jsonl(
            [
                {"type": "user", "timestamp": "2026-02-16T10:00:00Z", "message": {"content": "p" * 500}},
                {
                    "type": "assistant",
                    "timestamp": "2026-02-16T10:00:01Z",
                    "message": {"content": [{"type": "text", "text": "  " + "o" * 500}]},
                },
            ]
        )
        session = parse_session_file(path, now=NOW)
        self.assertEqual(len(session.first_prompt), 200)
        self.assertEqual(session.last_output, "o" * 300)

    def test_explicit_file_size_wins_over_stat(self) -> None:
        path = self._write_jsonl(self._conversation())
        session = extract_session(path, read_log_entries(path), file_size=42, now=NOW)
        self.assertEqual(session.log_file_size_bytes, 42)

    def test_detail_messages(self) -> None:
        path = self._write_jsonl(self._conversation())

        detail = parse_session_detail(path, now=NOW)

        assert detail is not None
        self.assertEqual(detail.id, "7f3c-session")
        self.assertEqual([m.id for m in detail.messages], ["u1", "a1", "a2"])
        user, first_reply, second_reply = detail.messages
        self.assertEqual(user.role, "user")
        self.assertEqual(user.content, "<command-name>/clear</command-name>\nAdd a cart endpoint")
        self.assertEqual(first_reply.thinking, "Look at the router first.")
        self.assertEqual(first_reply.tool_calls[0].name, "Read")
        self.assertEqual(first_reply.tool_calls[0].input, {"file_path": "api/router.py"})
        self.assertEqual(second_reply.tool_calls[0].name, "Bash")

    def test_detail_attaches_results_within_a_message(self) -> None:
        entries_path = self._write_jsonl(
            [
                {
                    "type": "assistant",
                    "timestamp": "2026-02-16T10:00:00Z",
                    "message": {
                        "content": [
                            {"type": "tool_use", "id": "t1", "name": "Grep", "input": {}},
                            {"type": "tool_result", "tool_use_id": "t1", "content": {"matches": 3}},
                        ]
                    },
                }
            ]
        )
        entries = read_log_entries(entries_path)
        session = extract_session(entries_path, entries, now=NOW)

        detail = build_session_detail(session, entries)

        self.assertEqual(detail.messages[0].tool_calls[0].result, '{"matches":3}')
        self.assertEqual(detail.messages[0].id, "2026-02-16T10:00:00Z-assistant")

    def test_structured_results_are_compact_json_before_truncation(self) -> None:
        payload = [{"type": "text", "text": f"line {n}"} for n in range(40)]
        entries_path = self._write_jsonl(
            [
                {
                    "type": "assistant",
                    "timestamp": "2026-02-16T10:00:00Z",
                    "message": {
                        "content": [
                            {"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}},
                            {"type": "tool_result", "tool_use_id": "t1", "content": payload},
                        ]
                    },
                }
            ]
        )

        detail = parse_session_detail(entries_path, now=NOW)

        result = detail.messages[0].tool_calls[0].result
        self.assertEqual(len(result), 500)
        self.assertEqual(result, json.dumps(payload, separators=(",", ":"))[:500])
        self.assertTrue(result.startswith('[{"type":"text","text":"line 0"}'))

    def test_repeated_parsing_is_identical(self) -> None:
        path = self._write_jsonl(self._conversation())
        self.assertEqual(parse_session_detail(path, now=NOW), parse_session_detail(path, now=NOW))


if __name__ == "__main__":
    unittest.main()
