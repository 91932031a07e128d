import argparse
import asyncio
import json
import logging

from flow_builder.api.config import get_settings
from flow_builder.api.deps import get_gateway, get_generator, get_session_store, get_tracker
from flow_builder.conversation.prompts import build_summary
from flow_builder.orchestrator.service import ConversationOrchestrator, OrchestratorError

HELP = "Commands: /generate, /reset, /switch <id>, /list, /summary, /quit"


def build_orchestrator() -> ConversationOrchestrator:
    settings = get_settings()
    return ConversationOrchestrator(
        store=get_session_store(),
        gateway=get_gateway(),
        tracker=get_tracker(),
        generator=get_generator(),
        chat_timeout_s=settings.chat_timeout_s,
        autosave_delay_s=settings.autosave_delay_s,
    )


async def handle_command(orch: ConversationOrchestrator, line: str) -> bool:
    cmd, _, arg = line.partition(" ")
    if cmd == "/quit":
        return False
    if cmd == "/generate":
        result = await orch.generate_artifact()
        if result.artifact is not None:
            print(json.dumps(result.artifact.workflow, ensure_ascii=False, indent=2))
        elif not result.discarded:
            print(f"[{result.error_code}] {result.message}")
    elif cmd == "/reset":
        await orch.reset()
        print("Conversation cleared.")
    elif cmd == "/switch":
        snap = await orch.switch_session(arg.strip())
        print(f"Switched to {orch.active_id} ({len(snap.messages)} messages)")
    elif cmd == "/list":
        for s in await orch.list_sessions():
            marker = "*" if s.id == orch.active_id else " "
            print(f"{marker} {s.id}  {s.status:<9}  v{s.version}  {s.name}")
    elif cmd == "/summary":
        if orch.state is None:
            print("Nothing discussed yet.")
        else:
            print(build_summary(orch.state))
    else:
        print(HELP)
    return True


async def main():
    logging.basicConfig(level=logging.WARNING, format="%(message)s")
    parser = argparse.ArgumentParser(description="Talk to the workflow consultant from a terminal.")
    parser.add_argument("--name", type=str, default="Untitled automation")
    parser.add_argument("--session", type=str, default="", help="Resume an existing session id.")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()
    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    orch = build_orchestrator()
    if args.session:
        await orch.switch_session(args.session)
    else:
        await orch.new_session(args.name)
    print(f"Session {orch.active_id}. {HELP}")

    try:
        while True:
            line = (await asyncio.to_thread(input, "> ")).strip()
            if not line:
                continue
            try:
                if line.startswith("/"):
                    if not await handle_command(orch, line):
                        break
                    continue
                result = await orch.send_message(line)
            except OrchestratorError as e:
                print(f"[{e.code}] {e}")
                continue
            if result.discarded or result.reply is None:
                continue
            if result.notice:
                print(f"({result.notice})")
            print(result.reply.content)
            if result.state is not None:
                print(f"-- {result.state.phase}, {result.state.completeness}% complete")
            if result.offer_generate:
                print("-- Ready to generate. Type /generate to build the workflow.")
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await orch.close()


if __name__ == "__main__":
    asyncio.run(main())
