"""Stand-in for an agent CLI that speaks stream-json.

Usage: fake_worker.py MODE [ARG]

Reads the prompt from stdin, then behaves according to MODE:

    ok           assistant text + successful result
    echo         echoes the prompt back as the result
    env          result is a JSON list of the environment variable names
    cwd          result is the working directory
    fail         writes to stderr and exits with code 3
    flaky        fails until ARG (a counter file) reaches 2, then succeeds
    error        exits 0 with an error result record
    tools        tool_use blocks, both tool_result shapes, then a result
    orphan-tool  a tool_use with no result, then exits with code 1
    malformed    garbage lines and a null text block between valid records
    flood        writes 50MB of output
    hang         sleeps for a minute
    ignore-term  ignores SIGTERM and sleeps for a minute
    crash        kills itself with SIGKILL
"""
import json
import os
import signal
import sys
import time


def emit(record):
    sys.stdout.write(json.dumps(record) + "\n")
    sys.stdout.flush()


def assistant(*blocks):
    emit({"type": "assistant", "message": {"role": "assistant", "content": list(blocks)}})


def text(value):
    return {"type": "text", "text": value}


def result(value, is_error=False):
    emit(
        {
            "type": "result",
            "subtype": "error_during_execution" if is_error else "success",
            "is_error": is_error,
            "result": value,
        }
    )


def main():
    mode = sys.argv[1] if len(sys.argv) > 1 else "ok"
    prompt = sys.stdin.read()
    emit({"type": "system", "subtype": "init", "model": "fake"})

    if mode == "ok":
        assistant(text("hello from the fake worker"))
        result("done")
    elif mode == "echo":
        result(prompt)
    elif mode == "env":
        result(json.dumps(sorted(os.environ)))
    elif mode == "cwd":
        result(os.getcwd())
    elif mode == "fail":
        sys.stderr.write(f"boom: token=abc123 in {os.getcwd()}/secret.txt\n")
        sys.exit(3)
    elif mode == "flaky":
        counter = sys.argv[2]
        count = int(open(counter).read() or 0) if os.path.exists(counter) else 0
        with open(counter, "w") as f:
            f.write(str(count + 1))
        if count < 2:
            sys.stderr.write(f"flaky failure {count + 1}\n")
            sys.exit(1)
        assistant(text("recovered"))
        result("recovered")
    elif mode == "error":
        result("the model refused", is_error=True)
    elif mode == "tools":
        assistant(
            text("reading files"),
            {"type": "tool_use", "id": "toolu_1", "name": "Read", "input": {"path": "a.py"}},
            {"type": "tool_use", "id": "toolu_2", "name": "Bash", "input": {"command": "ls"}},
        )
        emit(
            {
                "type": "user",
                "message": {
                    "role": "user",
                    "content": [
                        {"type": "tool_result", "tool_use_id": "toolu_1", "content": "print(1)"}
                    ],
                },
            }
        )
        emit(
            {
                "type": "tool_result",
                "tool_use_id": "toolu_2",
                "content": [{"type": "text", "text": "no such dir"}],
                "is_error": True,
            }
        )
        result("tools done")
    elif mode == "orphan-tool":
        assistant({"type": "tool_use", "id": f"toolu_{os.getpid()}", "name": "Bash", "input": {}})
        sys.exit(1)
    elif mode == "malformed":
        sys.stdout.write("this is not json\n")
        assistant(text("first"))
        sys.stdout.write("[1, 2, 3]\n")
        sys.stdout.write('{"type": "assistant", "message": \n')
        assistant(text(None))
        assistant(text("second"))
        result("survived")
    elif mode == "flood":
        chunk = ("x" * 1023 + "\n") * 1024
        try:
            for _ in range(50):
                sys.stdout.write(chunk)
            sys.stdout.flush()
        except BrokenPipeError:
            pass
        time.sleep(60)
    elif mode == "hang":
        assistant(text("thinking"))
        time.sleep(60)
    elif mode == "ignore-term":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        assistant(text("ready"))
        time.sleep(60)
    elif mode == "crash":
        os.kill(os.getpid(), signal.SIGKILL)
    else:
        sys.stderr.write(f"unknown mode {mode}\n")
        sys.exit(2)


if __name__ == "__main__":
    main()
