"""
Command-line interface for inspecting avatar profiles and managing their
knowledge documents
"""

import argparse
import asyncio
import json
import mimetypes
import sys
from pathlib import Path
from typing import List, Optional

from ..config.settings import Settings
from ..core.studio import StudioServices
from ..data.models.attachments import UploadedFile
from ..utils.errors import StudioError
from ..utils.logging import setup_logger, get_component_logger
from ..utils.validation import validate_config_file


class StudioCLI:
    """
    CLI for Avatar Studio
    """

    def __init__(self):
        """Initialize the CLI"""
        self.settings = None
        self.logger = None
        self.services = None

    def setup(self, config_path: Optional[str] = None, debug: bool = False):
        """Setup CLI components"""
        log_level = "DEBUG" if debug else "INFO"
        setup_logger("avatar_studio", level=log_level)
        self.logger = get_component_logger("CLI", "Studio")

        if config_path:
            self.logger.info(f"Loading configuration from: {config_path}")
            validation_issues = validate_config_file(config_path)
            if validation_issues:
                self.logger.error(f"Configuration validation failed: {validation_issues}")
                sys.exit(1)
            self.settings = Settings.from_file(config_path)
        else:
            self.logger.debug("Using default configuration")
            self.settings = Settings.from_default_config()

        self.services = StudioServices(self.settings)

    def serve(self, args):
        """Run the HTTP API"""
        from ..main import serve
        serve(self.settings, host=args.host, port=args.port)

    def list_profiles(self, args):
        """List avatar profiles"""
        profiles = asyncio.run(self.services.profiles.list(args.owner_id))

        if not profiles:
            print("No profiles found")
            return

        print(f"\nProfiles ({len(profiles)} total):")
        print("-" * 60)
        for profile in profiles:
            tags = len(profile.persona_tags)
            print(f"  {profile.id}  {profile.name or '(unnamed)':<24} {tags:>2} tags  "
                  f"updated {profile.updated_at:%Y-%m-%d %H:%M}")

    def show_profile(self, args):
        """Show one profile"""
        profile = asyncio.run(self.services.profiles.get(args.profile_id))

        if args.json:
            print(json.dumps(profile.model_dump(mode='json'), indent=2, ensure_ascii=False))
            return

        print(f"\nProfile: {profile.name} ({profile.id})")
        print("=" * 50)
        print(f"Age: {profile.age if profile.age is not None else '-'}")
        print(f"Gender: {profile.gender or '-'}")
        print(f"Origin: {profile.origin_country}")
        primary = profile.primary_language.value if profile.primary_language else '-'
        print(f"Primary language: {primary}")
        if profile.secondary_languages:
            print(f"Secondary languages: {', '.join(lang.value for lang in profile.secondary_languages)}")
        if profile.mbti_type:
            print(f"MBTI: {profile.mbti_type.value}")
        print(f"Persona tags ({len(profile.persona_tags)}): {', '.join(profile.persona_tags)}")
        print(f"Images: {len(profile.images)}")
        if profile.backstory:
            print(f"\nBackstory:\n  {profile.backstory}")

    def list_knowledge(self, args):
        """List knowledge documents of a profile"""
        ledger = asyncio.run(self.services.ledger_for(args.profile_id))
        documents = ledger.documents()

        print(f"\nKnowledge for {args.profile_id}: {ledger.linked_count} of {ledger.total_count} linked")
        print("-" * 60)
        for document in documents:
            marker = "x" if document.linked else " "
            print(f"  [{marker}] {document.id}  {document.display_name} ({document.size_label})")

    def upload_knowledge(self, args):
        """Upload a PDF to a profile"""
        path = Path(args.file)
        if not path.is_file():
            print(f"Error: File not found: {args.file}")
            sys.exit(1)

        content_type = args.content_type or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        upload = UploadedFile(filename=path.name, content_type=content_type, data=path.read_bytes())

        async def run():
            ledger = await self.services.ledger_for(args.profile_id)
            return await ledger.upload(upload)

        document = asyncio.run(run())
        print(f"Uploaded '{document.display_name}' as {document.id} ({document.size_label})")

    def toggle_knowledge(self, args):
        """Link or unlink a knowledge document"""
        async def run():
            ledger = await self.services.ledger_for(args.profile_id)
            return await ledger.toggle_link(args.document_id)

        document = asyncio.run(run())
        state = "linked" if document.linked else "unlinked (still stored, delete to remove)"
        print(f"'{document.display_name}' is now {state}")

    def delete_knowledge(self, args):
        """Delete a knowledge document and its stored file"""
        async def run():
            ledger = await self.services.ledger_for(args.profile_id)
            document = ledger.find(args.document_id)
            await ledger.delete(args.document_id)
            return document

        document = asyncio.run(run())
        print(f"Deleted '{document.display_name}'")

    def download_knowledge(self, args):
        """Copy a stored knowledge document to a local file"""
        async def run():
            ledger = await self.services.ledger_for(args.profile_id)
            document = ledger.find(args.document_id)
            return document, await self.services.attachments.read(document.storage_ref)

        document, data = asyncio.run(run())
        output = Path(args.output or document.display_name)
        output.write_bytes(data)
        print(f"Saved '{document.display_name}' to {output}")

    def validate(self, args):
        """Validate configuration and setup"""
        print("Validating configuration...")

        issues = self.settings.validate_configuration()

        if not issues:
            print("✓ Configuration is valid")
        else:
            print("✗ Configuration issues found:")
            for issue in issues:
                print(f"  - {issue}")
            sys.exit(1)

        print("\nTesting components:")

        profiles = asyncio.run(self.services.profiles.list())
        print(f"✓ Profile registry: {len(profiles)} profiles")
        print(f"✓ Blob storage root: {self.settings.get_blob_root()}")

        print("\n✓ Validation complete")

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Avatar Studio - inspect avatar profiles and manage their knowledge documents",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Run the API
  avatar-studio serve --port 8000

  # List profiles of one author
  avatar-studio list-profiles --owner-id user-42

  # Upload a PDF to a profile's knowledge base
  avatar-studio upload-knowledge --profile-id 3f2a9c... --file handbook.pdf

  # Unlink and then delete a document
  avatar-studio toggle-knowledge --profile-id 3f2a9c... --document-id 8d1e...
  avatar-studio delete-knowledge --profile-id 3f2a9c... --document-id 8d1e...
            """
        )

        parser.add_argument("--config", help="Path to configuration file", default=None)
        parser.add_argument("--debug", action="store_true", help="Enable debug mode")

        subparsers = parser.add_subparsers(dest="command", help="Available commands")

        serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
        serve_parser.add_argument("--host", help="Bind address (overrides config)")
        serve_parser.add_argument("--port", type=int, help="Port (overrides config)")

        list_parser = subparsers.add_parser("list-profiles", help="List avatar profiles")
        list_parser.add_argument("--owner-id", help="Only profiles of this author")

        show_parser = subparsers.add_parser("show-profile", help="Show one profile")
        show_parser.add_argument("--profile-id", required=True, help="Profile identifier")
        show_parser.add_argument("--json", action="store_true", help="Print raw JSON")

        knowledge_parser = subparsers.add_parser("list-knowledge", help="List knowledge documents of a profile")
        knowledge_parser.add_argument("--profile-id", required=True, help="Profile identifier")

        upload_parser = subparsers.add_parser("upload-knowledge", help="Upload a PDF to a profile")
        upload_parser.add_argument("--profile-id", required=True, help="Profile identifier")
        upload_parser.add_argument("--file", required=True, help="Path to the PDF")
        upload_parser.add_argument("--content-type", help="Override the detected content type")

        toggle_parser = subparsers.add_parser("toggle-knowledge", help="Link or unlink a knowledge document")
        toggle_parser.add_argument("--profile-id", required=True, help="Profile identifier")
        toggle_parser.add_argument("--document-id", required=True, help="Document identifier")

        delete_parser = subparsers.add_parser("delete-knowledge", help="Delete a knowledge document")
        delete_parser.add_argument("--profile-id", required=True, help="Profile identifier")
        delete_parser.add_argument("--document-id", required=True, help="Document identifier")

        download_parser = subparsers.add_parser("download-knowledge", help="Save a knowledge document locally")
        download_parser.add_argument("--profile-id", required=True, help="Profile identifier")
        download_parser.add_argument("--document-id", required=True, help="Document identifier")
        download_parser.add_argument("--output", help="Output path (defaults to the document name)")

        subparsers.add_parser("validate", help="Validate configuration and setup")

        return parser

    def run(self, argv: Optional[List[str]] = None):
        """Run the CLI"""
        parser = self.build_parser()
        args = parser.parse_args(argv)

        if not args.command:
            parser.print_help()
            sys.exit(1)

        self.setup(config_path=args.config, debug=args.debug)

        commands = {
            "serve": self.serve,
            "list-profiles": self.list_profiles,
            "show-profile": self.show_profile,
            "list-knowledge": self.list_knowledge,
            "upload-knowledge": self.upload_knowledge,
            "toggle-knowledge": self.toggle_knowledge,
            "delete-knowledge": self.delete_knowledge,
            "download-knowledge": self.download_knowledge,
            "validate": self.validate,
        }

        command_func = commands.get(args.command)
        try:
            command_func(args)
        except KeyboardInterrupt:
            self.logger.info("Operation cancelled by user")
            sys.exit(0)
        except StudioError as e:
            print(f"Error: {e}")
            sys.exit(1)
        except Exception as e:
            self.logger.error(f"Command failed: {e}")
            if args.debug:
                import traceback
                traceback.print_exc()
            sys.exit(1)
        finally:
            self.services.close()


def main(argv: Optional[List[str]] = None):
    """Main entry point for CLI"""
    cli = StudioCLI()
    cli.run(argv)


if __name__ == "__main__":
    main()
