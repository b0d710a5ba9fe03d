"""
CLI interface for shadowtree.
"""

import sys
import argparse
import traceback
from typing import Optional, List

from . import __version__
from .core import ShadowTreeRepo, ShadowTreeError
from .output import Output
from .commands.clone import clone_repository
from .commands.init import init_repository
from .commands.install import install_command
from .commands.migrate import migrate_repository
from .commands.shadow import (
    DEFAULT_EDITOR,
    shadow_list_command,
    shadow_new_command,
    shadow_open_command,
    shadow_remove_command,
    shadow_update_command
)
from .commands.worktree import (
    worktree_add_command,
    worktree_list_command,
    worktree_remove_command
)


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    # SUPPRESS keeps a flag given before the subcommand from being reset
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        default=argparse.SUPPRESS,
        help='Enable verbose output'
    )


def _add_directory_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--directory', '-d',
        help='Workspace root containing the repositories (default: $APP_DIR or the current directory)'
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog='shadowtree',
        description='Bare-repository worktrees with dependency installation and per-ticket shadow workspaces'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Repository setup
    init_parser = subparsers.add_parser('init', help='Create a bare repository with a main worktree')
    init_parser.add_argument('name', help='Repository name')
    init_parser.add_argument('--remote', help='URL of the origin remote')
    _add_common_options(init_parser)

    clone_parser = subparsers.add_parser('clone', help='Clone a repository into the bare + worktrees layout')
    clone_parser.add_argument('url', help='Repository URL')
    clone_parser.add_argument('directory', nargs='?', help='Target directory')
    _add_common_options(clone_parser)

    migrate_parser = subparsers.add_parser('migrate', help='Convert an existing repository into the bare + worktrees layout')
    migrate_parser.add_argument('path', help='Path of the repository to convert')
    migrate_parser.add_argument('--force', action='store_true', help='Migrate even with uncommitted changes')
    migrate_parser.add_argument('--all-branches', action='store_true', help='Add a worktree for every local branch')
    _add_common_options(migrate_parser)

    # Worktree commands
    worktree_parser = subparsers.add_parser('worktree', help='Manage worktrees')
    worktree_subparsers = worktree_parser.add_subparsers(dest='worktree_command')

    add_parser = worktree_subparsers.add_parser('add', help='Add or refresh the worktree for a branch')
    add_parser.add_argument('branch', help='Branch name (a leading origin/ is ignored)')
    add_parser.add_argument('start_point', nargs='?', help='Start point for a new branch')
    add_parser.add_argument('--no-install', action='store_true', help='Skip dependency installation')
    add_parser.add_argument('--no-merge', action='store_true', help='Do not merge the default branch')
    _add_common_options(add_parser)

    remove_parser = worktree_subparsers.add_parser('remove', help='Remove a worktree')
    remove_parser.add_argument('name', help='Worktree directory or branch name')
    remove_parser.add_argument('--force', '-f', action='store_true', help='Remove even with local changes')
    _add_common_options(remove_parser)

    list_parser = worktree_subparsers.add_parser('list', help='List worktrees')
    _add_common_options(list_parser)

    # Dependency installation
    install_parser = subparsers.add_parser('install', help='Install dependencies for every project in a tree')
    install_parser.add_argument('directory', nargs='?', help='Base directory (default: current directory)')
    install_parser.add_argument('--dry-run', action='store_true', help='Show the install plan only')
    _add_common_options(install_parser)

    # Shadow workspaces
    shadow_parser = subparsers.add_parser('shadow', help='Manage per-ticket shadow workspaces')
    shadow_subparsers = shadow_parser.add_subparsers(dest='shadow_command')

    new_parser = shadow_subparsers.add_parser('new', help='Create a shadow workspace')
    new_parser.add_argument('ticket', help='Ticket id')
    new_parser.add_argument('entries', nargs='+', metavar='REPO:WORKTREE', help='Worktrees to include')
    new_parser.add_argument('--force', action='store_true', help='Recreate an existing workspace')
    new_parser.add_argument('--create-missing', action='store_true', help='Provision worktrees that do not exist')
    _add_directory_option(new_parser)
    _add_common_options(new_parser)

    update_parser = shadow_subparsers.add_parser('update', help='Add or drop worktrees in a shadow workspace')
    update_parser.add_argument('ticket', help='Ticket id')
    update_parser.add_argument('entries', nargs='*', metavar='REPO:WORKTREE', help='Worktrees to add')
    update_parser.add_argument(
        '--drop',
        action='append',
        default=[],
        metavar='REPO[:WORKTREE]',
        help='Remove a repository or one of its worktrees (repeatable)'
    )
    update_parser.add_argument('--create-missing', action='store_true', help='Provision worktrees that do not exist')
    _add_directory_option(update_parser)
    _add_common_options(update_parser)

    shadow_remove_parser = shadow_subparsers.add_parser('remove', help='Delete a shadow workspace')
    shadow_remove_parser.add_argument('ticket', help='Ticket id')
    _add_directory_option(shadow_remove_parser)
    _add_common_options(shadow_remove_parser)

    shadow_list_parser = shadow_subparsers.add_parser('list', help='List shadow workspaces')
    _add_directory_option(shadow_list_parser)
    _add_common_options(shadow_list_parser)

    open_parser = shadow_subparsers.add_parser('open', help='Open a shadow workspace in the editor')
    open_parser.add_argument('ticket', help='Ticket id')
    open_parser.add_argument('--editor', default=DEFAULT_EDITOR, help='Editor command (default: code)')
    _add_directory_option(open_parser)
    _add_common_options(open_parser)

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    if args is None:
        args = sys.argv[1:]

    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    output = Output(verbose=parsed_args.verbose)

    try:
        if parsed_args.command == 'init':
            init_repository(parsed_args.name, remote_url=parsed_args.remote, output=output)
            return 0
        elif parsed_args.command == 'clone':
            clone_repository(parsed_args.url, parsed_args.directory, output=output)
            return 0
        elif parsed_args.command == 'migrate':
            migrate_repository(
                parsed_args.path,
                force=parsed_args.force,
                all_branches=parsed_args.all_branches,
                output=output
            )
            return 0
        elif parsed_args.command == 'worktree':
            return handle_worktree_command(parsed_args, output)
        elif parsed_args.command == 'install':
            install_command(parsed_args.directory, parsed_args.dry_run, output=output)
            return 0
        elif parsed_args.command == 'shadow':
            return handle_shadow_command(parsed_args, output)
        else:
            output.error(f"Command '{parsed_args.command}' not yet implemented")
            return 1

    except ShadowTreeError as e:
        output.error(f"Error: {e}")
        if e.hint:
            output.error(f"Run: {e.hint}")
        return 1
    except Exception as e:
        if output.verbose:
            traceback.print_exc()
        else:
            output.error(f"Unexpected error: {e}")
        return 1


def handle_worktree_command(args, output: Output) -> int:
    """Handle worktree subcommands."""
    if not args.worktree_command:
        output.error("Usage: shadowtree worktree {add,remove,list} ...")
        return 1

    repo = ShadowTreeRepo()

    if args.worktree_command == 'add':
        worktree_add_command(
            repo,
            args.branch,
            start_point=args.start_point,
            install=not args.no_install,
            merge=not args.no_merge,
            output=output
        )
        return 0
    elif args.worktree_command == 'remove':
        worktree_remove_command(repo, args.name, force=args.force, output=output)
        return 0
    elif args.worktree_command == 'list':
        return worktree_list_command(repo, output)
    else:
        output.error(f"Worktree command '{args.worktree_command}' not yet implemented")
        return 1


def handle_shadow_command(args, output: Output) -> int:
    """Handle shadow workspace subcommands."""
    if args.shadow_command == 'new':
        shadow_new_command(
            args.ticket,
            args.entries,
            directory=args.directory,
            force=args.force,
            create_missing=args.create_missing,
            output=output
        )
    elif args.shadow_command == 'update':
        shadow_update_command(
            args.ticket,
            args.entries,
            drops=args.drop,
            directory=args.directory,
            create_missing=args.create_missing,
            output=output
        )
    elif args.shadow_command == 'remove':
        shadow_remove_command(args.ticket, directory=args.directory, output=output)
    elif args.shadow_command == 'list':
        shadow_list_command(directory=args.directory, output=output)
    elif args.shadow_command == 'open':
        shadow_open_command(args.ticket, directory=args.directory, editor=args.editor, output=output)
    else:
        output.error("Usage: shadowtree shadow {new,update,remove,list,open} ...")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
