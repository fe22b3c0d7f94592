from __future__ import annotations

from brainshell.application.command_extractor import extract_command_blocks, flatten_blocks
from brainshell.domain.models import CommandBlock


def test_bash_block_is_extracted_with_comments_and_prompts_removed() -> None:
    text = (
        "Run this:\n"
        "```bash\n"
        "# create the file\n"
        "$ echo 'console.log(\"hi\")' > app.js\n"
        "\n"
        "node app.js\n"
        "```\n"
    )

    blocks = extract_command_blocks(text)

    assert blocks == [
        CommandBlock(lines=("echo 'console.log(\"hi\")' > app.js", "node app.js"), language="bash")
    ]


def test_multiple_shell_blocks_keep_their_order() -> None:
    text = "```sh\nmkdir app\n```\nthen\n```powershell\nPS C:\\app> Get-ChildItem\n```"

    blocks = extract_command_blocks(text)

    assert [block.lines for block in blocks] == [("mkdir app",), ("Get-ChildItem",)]
    assert [block.language for block in blocks] == ["sh", "powershell"]


def test_tagged_shell_blocks_win_over_untagged_ones() -> None:
    text = "```\nls -la\n```\n```bash\npwd\n```"

    assert flatten_blocks(extract_command_blocks(text)) == ["pwd"]


def test_python_block_is_ignored_and_untagged_block_is_used() -> None:
    text = "```python\nprint('x')\n```\n```\nnpm install\n```"

    blocks = extract_command_blocks(text)

    assert flatten_blocks(blocks) == ["npm install"]
    assert blocks[0].language is None


def test_only_non_shell_code_yields_nothing() -> None:
    text = "Here is the config:\n```json\n{\"a\": 1}\n```\nand the code:\n```python\nimport os\n```"

    assert extract_command_blocks(text) == []


def test_heuristic_scan_collects_command_lines_from_prose() -> None:
    text = "First install deps:\n$ npm install\nthen start it\nnpm run dev\nThat is all."

    blocks = extract_command_blocks(text)

    assert len(blocks) == 1
    assert blocks[0].lines == ("npm install", "npm run dev")


def test_heuristic_scan_skips_sentences() -> None:
    text = "You could cd into the folder.\ngit is a version control system."

    assert extract_command_blocks(text) == []


def test_shell_block_with_only_comments_is_dropped() -> None:
    text = "```bash\n# nothing to do\n\n```"

    assert extract_command_blocks(text) == []


def test_empty_or_non_string_input_gives_empty_list() -> None:
    assert extract_command_blocks("") == []
    assert extract_command_blocks("   \n") == []
    assert extract_command_blocks(None) == []  # type: ignore[arg-type]


def test_shebang_survives_comment_filter() -> None:
    text = "```bash\n#!/bin/bash\necho hi\n```"

    assert flatten_blocks(extract_command_blocks(text)) == ["#!/bin/bash", "echo hi"]


def test_crlf_line_endings_are_normalised() -> None:
    text = "```bash\r\nls\r\npwd\r\n```"

    assert flatten_blocks(extract_command_blocks(text)) == ["ls", "pwd"]


def test_heredoc_body_is_kept_verbatim() -> None:
    text = (
        "```bash\n"
        "# write the entry point\n"
        "cat > app.py <<'EOF'\n"
        "def main():\n"
        "    print(\"hi\")\n"
        "\n"
        "# entry\n"
        "main()\n"
        "EOF\n"
        "\n"
        "python3 app.py\n"
        "```"
    )

    blocks = extract_command_blocks(text)

    assert blocks[0].lines == (
        "cat > app.py <<'EOF'",
        "def main():",
        "    print(\"hi\")",
        "",
        "# entry",
        "main()",
        "EOF",
        "python3 app.py",
    )


def test_dash_heredoc_and_here_string_bodies_are_kept() -> None:
    bash = "```bash\ncat <<-END > notes.txt\n\t$ not a prompt\n\t# kept\n\tEND\necho done\n```"
    powershell = "```powershell\n$body = @'\n  # indented\n\n'@\nSet-Content a.txt $body\n```"

    assert extract_command_blocks(bash)[0].lines == (
        "cat <<-END > notes.txt",
        "\t$ not a prompt",
        "\t# kept",
        "\tEND",
        "echo done",
    )
    assert extract_command_blocks(powershell)[0].lines == (
        "$body = @'",
        "  # indented",
        "",
        "'@",
        "Set-Content a.txt $body",
    )


def test_fence_indentation_is_removed_but_nested_indentation_kept() -> None:
    text = "1. Run:\n   ```bash\n   for f in *.log; do\n     gzip \"$f\"\n   done\n   ```"

    assert extract_command_blocks(text)[0].lines == ("for f in *.log; do", "  gzip \"$f\"", "done")


def test_here_string_operator_is_not_a_heredoc() -> None:
    text = "```bash\ngrep x <<< \"$data\"\n# dropped\nls\n```"

    assert flatten_blocks(extract_command_blocks(text)) == ["grep x <<< \"$data\"", "ls"]
