"""
Example: Drive the app server from blocking code.

bridge.call runs the bridge on a background event loop, so plain
scripts (or threads) can make calls without touching asyncio.

python sync_client.py
"""

import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from codexlink import AppServerBridge, RemoteCallError


def main():
    bridge = AppServerBridge()
    bridge.on("exit", lambda code, signal: print(f"app server exited: code={code} signal={signal}"))

    bridge.call.start()
    try:
        conversation = bridge.call.new_conversation({})
        print(f"conversation: {conversation['conversationId']} (model {conversation.get('model')})")

        try:
            bridge.call.no_such_method()
        except RemoteCallError as e:
            print(f"expected failure: [{e.code}] {e.message}")
    finally:
        bridge.call.close()


if __name__ == "__main__":
    main()
