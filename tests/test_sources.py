from __future__ import annotations

import stat
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import ai_launcher.gitignore as gitignore
import ai_launcher.sources as sources
from ai_launcher.sensitive import SecretValue


class MappingFileTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = Path(self.tmp.name) / "env-keys"

    def test_parses_references_and_skips_comments_and_blank_lines(self) -> None:
        self.path.write_text(
            "# vault references\n"
            "\n"
            "OPENAI_API_KEY=vault-note:OpenAI Key\n"
            "AWS_SECRET_ACCESS_KEY=Bitwarden-note:aws-secret\n",
            encoding="utf-8",
        )

        refs = sources.read_mapping_file(self.path)

        self.assertEqual(
            [(ref.name, ref.source, ref.reference) for ref in refs],
            [
                ("OPENAI_API_KEY", "vault-note", "OpenAI Key"),
                ("AWS_SECRET_ACCESS_KEY", "vault-note", "aws-secret"),
            ],
        )
        self.assertEqual([ref.line for ref in refs], [3, 4])

    def test_missing_file_yields_no_references(self) -> None:
        self.assertEqual(sources.read_mapping_file(self.path), [])

    def test_line_without_reference_is_skipped_with_warning(self) -> None:
        self.path.write_text("FOO=vault-note\nBAR=vault-note:bar-item\n", encoding="utf-8")

        with self.assertLogs("ai_launcher.sources", level="WARNING") as logs:
            refs = sources.read_mapping_file(self.path)

        self.assertEqual([ref.name for ref in refs], ["BAR"])
        self.assertEqual(refs[0].reference, "bar-item")
        self.assertEqual(len(logs.output), 1)
        self.assertIn("line 1", logs.output[0])

    def test_duplicate_name_keeps_last_value_at_first_position(self) -> None:
        self.path.write_text(
            "A=vault-note:first\nB=vault-note:b\nA=vault-note:second\n",
            encoding="utf-8",
        )

        with self.assertLogs("ai_launcher.sources", level="WARNING") as logs:
            refs = sources.read_mapping_file(self.path)

        self.assertEqual([ref.name for ref in refs], ["A", "B"])
        self.assertEqual(refs[0].reference, "second")
        self.assertIn("Duplicate entry for A", logs.output[0])

    def test_parsing_same_file_twice_is_identical(self) -> None:
        self.path.write_text("A=vault-note:a\n# c\nB=vault-note:b\n", encoding="utf-8")
        self.assertEqual(sources.read_mapping_file(self.path), sources.read_mapping_file(self.path))


class DotenvTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = Path(self.tmp.name) / ".env"

    def test_reads_values_and_strips_quotes(self) -> None:
        self.path.write_text(
            "export AWS_REGION=us-east-1\n"
            'AWS_ACCESS_KEY_ID="AKIA123"\n'
            "GREETING='hello world'\n"
            "# comment\n"
            "not a pair\n"
            "EMPTY=\n",
            encoding="utf-8",
        )

        self.assertEqual(
            sources.read_dotenv(self.path),
            {"AWS_REGION": "us-east-1", "AWS_ACCESS_KEY_ID": "AKIA123", "GREETING": "hello world"},
        )

    def test_last_occurrence_wins(self) -> None:
        self.path.write_text("KEY=one\nKEY='two'\n", encoding="utf-8")
        self.assertEqual(sources.read_dotenv(self.path), {"KEY": "two"})

    def test_missing_file_is_empty(self) -> None:
        self.assertEqual(sources.read_dotenv(self.path), {})

    def test_read_env_treats_empty_as_absent(self) -> None:
        self.assertEqual(sources.read_env("KEY", {"KEY": "value"}), "value")
        self.assertIsNone(sources.read_env("KEY", {"KEY": ""}))
        self.assertIsNone(sources.read_env("KEY", {}))


class PersistedSecretStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = Path(self.tmp.name) / ".env"
        self.store = sources.PersistedSecretStore(self.path)

    def test_first_write_creates_private_file(self) -> None:
        self.assertTrue(self.store.write("OPENAI_API_KEY", "sk-1"))

        self.assertEqual(self.path.read_text(encoding="utf-8"), 'OPENAI_API_KEY="sk-1"\n')
        self.assertEqual(stat.S_IMODE(self.path.stat().st_mode), 0o600)

    def test_rewrite_updates_in_place_and_keeps_unrelated_lines(self) -> None:
        self.path.write_text("# keep me\nAWS_REGION=us-east-1\nOPENAI_API_KEY=old\nOTHER='x'\n", encoding="utf-8")

        self.store.write("OPENAI_API_KEY", "sk-first")
        self.store.write("OPENAI_API_KEY", "sk-second")

        lines = self.path.read_text(encoding="utf-8").splitlines()
        self.assertEqual(lines, ["# keep me", "AWS_REGION=us-east-1", 'OPENAI_API_KEY="sk-second"', "OTHER='x'"])
        self.assertEqual(sources.read_dotenv(self.path)["OPENAI_API_KEY"], "sk-second")

    def test_new_key_is_appended(self) -> None:
        self.path.write_text("AWS_REGION=us-east-1", encoding="utf-8")

        self.store.write("OPENAI_API_KEY", "sk-1")

        self.assertEqual(
            self.path.read_text(encoding="utf-8"),
            'AWS_REGION=us-east-1\nOPENAI_API_KEY="sk-1"\n',
        )

    def test_empty_value_is_not_written(self) -> None:
        self.assertFalse(self.store.write("OPENAI_API_KEY", ""))
        self.assertFalse(self.path.exists())

    def test_duplicate_definitions_collapse_into_one(self) -> None:
        self.path.write_text("OPENAI_API_KEY=one\nAWS_REGION=us-east-1\nexport OPENAI_API_KEY=two\n", encoding="utf-8")

        self.store.write("OPENAI_API_KEY", "sk-new")

        lines = self.path.read_text(encoding="utf-8").splitlines()
        self.assertEqual(lines, ["AWS_REGION=us-east-1", 'OPENAI_API_KEY="sk-new"'])

    def test_rewrite_keeps_existing_file_mode(self) -> None:
        self.path.write_text("AWS_REGION=us-east-1\n", encoding="utf-8")
        self.path.chmod(0o640)

        self.store.write("OPENAI_API_KEY", "sk-1")

        self.assertEqual(stat.S_IMODE(self.path.stat().st_mode), 0o640)

    def test_failed_replace_leaves_existing_file_intact(self) -> None:
        original = "# keep me\nAWS_REGION=us-east-1\nOPENAI_API_KEY=old\n"
        self.path.write_text(original, encoding="utf-8")

        with patch("ai_launcher.sources.os.replace", side_effect=OSError("No space left on device")):
            with self.assertRaises(OSError):
                self.store.write("OPENAI_API_KEY", "sk-new")

        self.assertEqual(self.path.read_text(encoding="utf-8"), original)
        self.assertEqual(sorted(item.name for item in self.path.parent.iterdir()), [".env"])


class GitignoreGuardTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.project = Path(self.tmp.name)
        self.gitignore = self.project / ".gitignore"

    def test_outside_repository_is_a_no_op(self) -> None:
        self.assertFalse(gitignore.ensure_ignored(self.project))
        self.assertFalse(self.gitignore.exists())

    def test_creates_ignore_file_with_single_entry(self) -> None:
        (self.project / ".git").mkdir()

        self.assertTrue(gitignore.ensure_ignored(self.project))

        self.assertEqual(self.gitignore.read_text(encoding="utf-8"), ".env\n")

    def test_running_twice_adds_no_duplicates(self) -> None:
        (self.project / ".git").mkdir()

        gitignore.ensure_ignored(self.project, [".env"])
        self.assertFalse(gitignore.ensure_ignored(self.project, [".env"]))

        self.assertEqual(self.gitignore.read_text(encoding="utf-8").splitlines(), [".env"])

    def test_appends_after_existing_entries_without_trailing_newline(self) -> None:
        (self.project / ".git").mkdir()
        self.gitignore.write_text("node_modules", encoding="utf-8")

        gitignore.ensure_ignored(self.project, [".env", "env-keys"])

        self.assertEqual(self.gitignore.read_text(encoding="utf-8"), "node_modules\n.env\nenv-keys\n")

    def test_git_file_marks_worktree_as_repository(self) -> None:
        (self.project / ".git").write_text("gitdir: /elsewhere/.git/worktrees/x\n", encoding="utf-8")

        self.assertTrue(gitignore.ensure_ignored(self.project))


class SecretValueTests(unittest.TestCase):
    def test_renders_masked_everywhere(self) -> None:
        secret = SecretValue("sk-abcdefghijkl")

        self.assertEqual(secret.reveal(), "sk-abcdefghijkl")
        self.assertNotIn("abcdef", str(secret))
        self.assertNotIn("abcdef", repr(secret))
        self.assertNotIn("abcdef", f"{secret}")
        self.assertNotIn("abcdef", "%s" % (secret,))

    def test_preview_shows_only_short_prefix(self) -> None:
        self.assertEqual(SecretValue("sk-abcdefghijkl").preview(), "sk-a...")
        self.assertEqual(SecretValue("short").preview(), "********")

    def test_equality_compares_contents(self) -> None:
        self.assertEqual(SecretValue("a"), SecretValue("a"))
        self.assertNotEqual(SecretValue("a"), SecretValue("b"))
        self.assertFalse(SecretValue(""))


if __name__ == "__main__":
    unittest.main()
