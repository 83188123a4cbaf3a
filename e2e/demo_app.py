#!/usr/bin/env python3
"""
Demo app driving a conversation through codexlink.

By default it talks to the fake app server in e2e/workers, so it runs
without a codex install. Pass --real to spawn `codex app-server` instead.

Run: python e2e/demo_app.py [--real] [prompt]
"""

import asyncio
import os
import sys

E2E_DIR = os.path.dirname(os.path.abspath(__file__))
WORKERS_DIR = os.path.join(E2E_DIR, "workers")
SRC_DIR = os.path.abspath(os.path.join(E2E_DIR, "..", "python", "src"))

sys.path.insert(0, SRC_DIR)

from codexlink import AppServerBridge, Notification, Request, null_traffic_logger, protocol


def build_bridge(real: bool) -> AppServerBridge:
    if real:
        return AppServerBridge()
    return AppServerBridge(
        executable=sys.executable,
        cwd=WORKERS_DIR,
        env={"PYTHONPATH": SRC_DIR},
        traffic_logger=null_traffic_logger,
    )


async def main(real: bool, prompt: str):
    print("=" * 60)
    print("codexlink demo - one conversation turn")
    print("=" * 60)
    print()

    async with build_bridge(real) as bridge:
        print(f"[1] App server ready (pid {bridge.pid})")
        done = asyncio.Event()

        def on_message(message, raw):
            if isinstance(message, Request):
                # Deny everything the agent wants to run
                print(f"    approval requested: {message.method}")
                bridge.send_response(
                    message.id, protocol.approval_result(protocol.ReviewDecision.DENIED)
                )
            elif isinstance(message, Notification) and message.method == "codex/event":
                msg = message.params.get("msg", {})
                if msg.get("type") == "agent_message":
                    print(f"    agent: {msg.get('message')}")
                elif msg.get("type") == "task_complete":
                    done.set()

        bridge.on("message", on_message)
        bridge.on("error", lambda error: print(f"    error: {error}"))

        conversation = await bridge.acall.new_conversation({})
        conversation_id = conversation["conversationId"]
        print(f"[2] Conversation {conversation_id}")

        await bridge.add_conversation_listener({"conversationId": conversation_id})
        print(f"[3] Sending: {prompt!r}")
        await bridge.send_user_message(
            protocol.user_message_params(conversation_id, protocol.text_item(prompt))
        )

        await asyncio.wait_for(done.wait(), timeout=300)

        print()
        print("=" * 60)
        print("Metrics:")
        print("=" * 60)
        for key, value in bridge.metrics.to_dict()["requests"].items():
            print(f"  {key}: {value}")

    print()
    print("Demo complete!")


if __name__ == "__main__":
    args = sys.argv[1:]
    use_real = "--real" in args
    words = [a for a in args if a != "--real"]
    try:
        asyncio.run(main(use_real, " ".join(words) or "Say hello"))
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
