from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime

from auth.errors import AuthError
from auth.flow import OAuthFlow
from auth.token_store import TokenStore, create_token_store
from mission_control.agent import Agent
from mission_control.constants import APP_NAME, APP_VERSION
from mission_control.env import Settings, load_env, load_settings, setup_logging, validate_settings
from mission_control.errors import MCPError
from mission_control.transport import HTTPTransport, SubprocessTransport, Transport


def create_oauth_flow(settings: Settings, token_store: TokenStore) -> OAuthFlow:
    return OAuthFlow(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_uri=settings.redirect_uri,
        scopes=settings.scopes,
        token_store=token_store,
    )


def create_transport(settings: Settings) -> Transport:
    if settings.mcp_command:
        return SubprocessTransport(
            settings.mcp_command,
            settings.mcp_args,
            token_env=settings.mcp_token_env,
        )
    return HTTPTransport(
        settings.mcp_url,
        timeout=settings.call_timeout,
        auth_mode=settings.mcp_auth_mode,
    )


def create_agent(settings: Settings, token_store: TokenStore | None = None) -> Agent:
    store = token_store or create_token_store(settings.token_path)
    return Agent(
        transport=create_transport(settings),
        token_store=store,
        oauth_flow=create_oauth_flow(settings, store),
        call_timeout=settings.call_timeout,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_NAME, description="HubSpot MCP agent")
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    groups = parser.add_subparsers(dest="group", required=True)

    auth_parser = groups.add_parser("auth", help="Authentication commands")
    auth_commands = auth_parser.add_subparsers(dest="command", required=True)
    auth_commands.add_parser("login", help="Login with HubSpot OAuth")
    auth_commands.add_parser("status", help="Show authentication status")
    auth_commands.add_parser("logout", help="Delete the stored token")

    tools_parser = groups.add_parser("tools", help="MCP tools commands")
    tools_commands = tools_parser.add_subparsers(dest="command", required=True)
    tools_commands.add_parser("list", help="List available MCP tools")
    call_parser = tools_commands.add_parser("call", help="Call an MCP tool")
    call_parser.add_argument("-n", "--name", required=True, help="Tool name")
    call_parser.add_argument("-i", "--input", required=True, help="Tool input as JSON")
    return parser


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    token_store = create_token_store(settings.token_path)

    if args.group == "auth":
        flow = create_oauth_flow(settings, token_store)
        if args.command == "login":
            print("Starting OAuth login flow...", file=sys.stderr)
            await flow.login()
            print("Successfully authenticated!")
            return 0
        if args.command == "logout":
            await flow.logout()
            print("Logged out.")
            return 0

        agent = create_agent(settings, token_store)
        try:
            status = await agent.auth_status()
        finally:
            await agent.close()
        if not status.authenticated:
            print("Status: Not authenticated")
            print(f"Run '{APP_NAME} auth login' to authenticate")
            return 0
        print("Status: Authenticated")
        print(f"Message: {status.message}")
        expires = datetime.fromtimestamp(status.expires_at or 0)
        print(f"Token expires at: {expires:%Y-%m-%d %H:%M:%S}")
        return 0

    if args.command == "call":
        try:
            arguments = json.loads(args.input)
        except json.JSONDecodeError as error:
            raise ValueError(f"invalid JSON input: {error}") from error
        if not isinstance(arguments, dict):
            raise ValueError("tool input must be a JSON object")

    async with create_agent(settings, token_store) as agent:
        if args.command == "list":
            tools = await agent.list_tools()
            print(f"Available tools ({len(tools)}):\n")
            for tool in tools:
                print(f"Name: {tool.name}")
                print(f"Description: {tool.description}")
                if tool.input_schema:
                    schema = json.dumps(tool.input_schema, indent=2)
                    print(f"Input Schema:\n{schema}")
                print()
            return 0

        result = await agent.call_tool(args.name, arguments)
        print(json.dumps(result, indent=2))
        return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    load_env()
    setup_logging()
    settings = load_settings()

    try:
        validate_settings(settings)
        return asyncio.run(_run(args, settings))
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130
    except (AuthError, MCPError, RuntimeError, ValueError, OSError) as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
