"""
Example: Run one conversation turn against `codex app-server`.

Streams agent events to the terminal and answers approval requests
interactively. Requires the `codex` binary on PATH (or $CODEX_BIN).

python conversation.py "Explain what this repository does"
"""

import asyncio
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from codexlink import AppServerBridge, LogLevel, Notification, Request, protocol


APPROVAL_METHODS = {
    protocol.ServerRequestMethod.EXEC_COMMAND_APPROVAL,
    protocol.ServerRequestMethod.APPLY_PATCH_APPROVAL,
}


def ask_decision(request: Request) -> protocol.ReviewDecision:
    """Prompt on the terminal for an approval decision."""
    params = request.params or {}
    if request.method == protocol.ServerRequestMethod.EXEC_COMMAND_APPROVAL:
        print(f"\n? run {' '.join(params.get('command', []))} in {params.get('cwd')}")
    else:
        print(f"\n? apply patch touching {', '.join(params.get('fileChanges', {}))}")
    answer = input("  approve? [y/N/a(lways)] ").strip().lower()
    if answer == "a":
        return protocol.ReviewDecision.APPROVED_FOR_SESSION
    if answer == "y":
        return protocol.ReviewDecision.APPROVED
    return protocol.ReviewDecision.DENIED


async def main(prompt: str):
    bridge = AppServerBridge(log_level=LogLevel.WARN)
    turn_done = asyncio.Event()
    loop = asyncio.get_running_loop()

    async def answer(request: Request):
        # input() blocks; keep the reader running while the user decides
        decision = await loop.run_in_executor(None, ask_decision, request)
        bridge.send_response(request.id, protocol.approval_result(decision))

    def on_message(message, raw):
        if isinstance(message, Request) and message.method in APPROVAL_METHODS:
            asyncio.ensure_future(answer(message))
        elif isinstance(message, Notification) and message.method == "codex/event":
            msg = message.params.get("msg", {})
            kind = msg.get("type")
            if kind == "agent_message_delta":
                print(msg.get("delta", ""), end="", flush=True)
            elif kind == "agent_message":
                print()
            elif kind in ("task_complete", "turn_aborted", "error"):
                turn_done.set()

    bridge.on("message", on_message)
    bridge.on("exit", lambda code, signal: turn_done.set())

    async with bridge:
        conversation = await bridge.acall.new_conversation(
            {"cwd": os.getcwd(), "approvalPolicy": protocol.AskForApproval.ON_REQUEST.value}
        )
        conversation_id = conversation["conversationId"]
        await bridge.add_conversation_listener({"conversationId": conversation_id})

        await bridge.send_user_message(
            protocol.user_message_params(conversation_id, protocol.text_item(prompt))
        )
        await turn_done.wait()

        print("\nmetrics:", bridge.metrics.to_dict()["requests"])


if __name__ == "__main__":
    asyncio.run(main(" ".join(sys.argv[1:]) or "Say hello"))
