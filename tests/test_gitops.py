import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path

from tf_orchestrator.gitops import GitCommandError, GitRepository


def _git_available() -> bool:
    return shutil.which("git") is not None


def _run_git(args: list[str], cwd: Path) -> None:
    subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        check=True,
        capture_output=True,
        text=True,
    )


class GitRepositoryTests(unittest.TestCase):
    def setUp(self) -> None:
        if not _git_available():
            self.skipTest("git binary not found")

    def test_revision_of_local_repo(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            _run_git(["init"], root)
            _run_git(["checkout", "-b", "staging"], root)
            _run_git(["config", "user.email", "bot@example.com"], root)
            _run_git(["config", "user.name", "Orchestrator"], root)
            (root / "main.tf").write_text("# v1\n", encoding="utf-8")
            _run_git(["add", "main.tf"], root)
            _run_git(["commit", "-m", "initial"], root)

            revision = GitRepository(root).revision()
            self.assertEqual(revision.branch, "staging")
            self.assertEqual(len(revision.commit_sha), 40)

            # detached HEAD has no branch
            _run_git(["checkout", "--detach"], root)
            self.assertIsNone(GitRepository(root).revision().branch)

    def test_not_a_repository(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(GitCommandError):
                GitRepository(Path(tmp)).revision()

    def test_missing_binary(self) -> None:
        with self.assertRaises(GitCommandError) as caught:
            GitRepository(git_binary="git-does-not-exist").revision()
        self.assertEqual(caught.exception.exit_code, 127)


if __name__ == "__main__":
    unittest.main()
