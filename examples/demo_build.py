#!/usr/bin/env python3
"""
Demo script for building an app with a remote build agent.

This script demonstrates:
- Creating an agent from a prompt and streaming its blueprint
- Subscribing to session events and state changes
- Waiting until the build is deployable and deploying a preview
- Reading the reconstructed workspace

Environment:
    AGENTWIRE_BASE_URL  Platform URL (default http://localhost:5173)
    AGENTWIRE_TOKEN     JWT access token
"""

import asyncio
import logging
import os
import sys

from agentwire.client import AgentClient
from agentwire.errors import AgentwireError
from agentwire.events import AgentEvent
from agentwire.logging_config import set_module_level, setup_logging
from agentwire.state import SessionState

# Set up rich logging to see what's happening
setup_logging(level=logging.INFO)

# Enable debug logging for the socket layer to see reconnects
set_module_level('agentwire.connection', logging.DEBUG)


def on_blueprint_chunk(chunk: str):
    """Print blueprint text as it streams in."""
    sys.stdout.write(chunk)
    sys.stdout.flush()


def on_state_change(state: SessionState, previous: SessionState):
    """Print generation and phase transitions."""
    if state.generation != previous.generation:
        print(f"[GENERATION] {state.generation.status}")
    if state.phase != previous.phase and state.phase.status != "idle":
        print(f"[PHASE] {state.phase.status:12s} {state.phase.name or ''}")
    if state.current_file and state.current_file != previous.current_file:
        print(f"[FILE] {state.current_file}")


def on_reconnecting(info):
    print(f"[SOCKET] reconnect #{info.attempt} in {info.delay:.1f}s ({info.reason})")


async def run(prompt: str):
    options = {
        "base_url": os.environ.get("AGENTWIRE_BASE_URL", "http://localhost:5173"),
        "token": os.environ.get("AGENTWIRE_TOKEN"),
    }

    async with AgentClient(options) as client:
        print("\n1. Creating agent...")
        session = await client.build(prompt, {"on_blueprint_chunk": on_blueprint_chunk})
        print(f"\n   ✓ Agent {session.agent_id} ({session.behavior_type or 'default'})")

        print("\n2. Subscribing to events...")
        session.state.on_change(on_state_change)
        session.on(AgentEvent.RECONNECTING, on_reconnecting)
        session.on(AgentEvent.AGENT_ERROR, lambda e: print(f"[AGENT ERROR] {e.error}"))
        print("   ✓ Subscribed")

        async with session:
            print("\n3. Waiting until deployable...")
            result = await session.wait.deployable()
            print(f"   ✓ {result.files} files ({result.reason})")

            print("\n4. Deploying preview...")
            session.deploy_preview()
            deployed = await session.wait.preview_deployed(timeout=300.0)
            print(f"   ✓ Preview: {deployed.preview_url}")

            print("\n" + "=" * 60)
            print("Workspace:")
            print("=" * 60)
            for path in session.files.list_paths():
                print(f"  {path} ({len(session.files.read(path) or '')} chars)")


def main():
    """Main demo function."""
    prompt = " ".join(sys.argv[1:]) or "A todo list app with dark mode"

    print("\n" + "=" * 60)
    print("Agentwire Build Demo")
    print("=" * 60)
    print(f"Prompt: {prompt}")

    try:
        asyncio.run(run(prompt))
    except AgentwireError as e:
        print(f"\n   ✗ Build failed: {e}")
    except KeyboardInterrupt:
        print("\n\nShutting down...")

    print("\nDemo complete!")


if __name__ == "__main__":
    main()
