#!/usr/bin/env python3
"""
Setup script for the Cloud Tasks MCP Server

This script helps you set up the Cloud Tasks MCP server by:
1. Installing required dependencies
2. Checking for a service account key per configured project
3. Generating configuration for Claude Desktop
"""

import os
import sys
import json
import subprocess
import platform
from pathlib import Path

from cloud_tasks_mcp import LOCATION_PROJECTS_ENV, KEYS_DIR_ENV, RouterConfig, get_keys_dir

# Color codes for terminal output
class Colors:
    HEADER = '\033[95m'
    OKCYAN = '\033[96m'
    OKGREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'

def print_header(text):
    print(f"\n{Colors.HEADER}{Colors.BOLD}{'='*60}{Colors.ENDC}")
    print(f"{Colors.HEADER}{Colors.BOLD}{text:^60}{Colors.ENDC}")
    print(f"{Colors.HEADER}{Colors.BOLD}{'='*60}{Colors.ENDC}\n")

def print_success(text):
    print(f"{Colors.OKGREEN}✅ {text}{Colors.ENDC}")

def print_warning(text):
    print(f"{Colors.WARNING}⚠️  {text}{Colors.ENDC}")

def print_error(text):
    print(f"{Colors.FAIL}❌ {text}{Colors.ENDC}")

def print_info(text, end="\n"):
    print(f"{Colors.OKCYAN}ℹ️  {text}{Colors.ENDC}", end=end)

def check_python_version():
    """Check if Python version is 3.10 or higher"""
    print_header("Checking Python Version")

    if sys.version_info < (3, 10):
        print_error(f"Python 3.10 or higher is required. You have {sys.version}")
        return False

    print_success(f"Python {sys.version.split()[0]} detected")
    return True

def install_dependencies():
    """Install the server package and its dependencies"""
    print_header("Installing Dependencies")

    try:
        subprocess.check_call([sys.executable, "-m", "pip", "install", "-e", "."])
        print_success("All dependencies installed successfully")
        return True
    except subprocess.CalledProcessError:
        print_error("Failed to install dependencies")
        print_info("Try running: pip install -e .")
        return False

def find_missing_keys(config, keys_dir):
    """Return the configured projects that have no key file in keys_dir"""
    return [
        project for project in config.unique_projects()
        if not (Path(keys_dir) / f"{project}.json").exists()
    ]

def check_credentials(config, keys_dir):
    """Check that every configured project has a service account key"""
    print_header("Checking Service Account Keys")

    if not config.location_projects:
        print_error(f"{LOCATION_PROJECTS_ENV} is not set or has no valid location:project pairs")
        print_info(f"Example: export {LOCATION_PROJECTS_ENV}=us-east1:my-project")
        return False

    keys_dir = Path(keys_dir)
    if not keys_dir.exists():
        print_info(f"Creating keys directory: {keys_dir}")
        keys_dir.mkdir(parents=True, exist_ok=True)

    missing = find_missing_keys(config, keys_dir)
    for project in config.unique_projects():
        if project in missing:
            print_warning(f"No key for project {project} (expected {keys_dir / f'{project}.json'})")
        else:
            print_success(f"Key found for project {project}")

    if len(missing) == len(config.unique_projects()):
        print("\nTo create a key:")
        print("1. Go to https://console.cloud.google.com/iam-admin/serviceaccounts")
        print("2. Create or select a service account with the Cloud Tasks Admin role")
        print("3. Open 'Keys' > 'Add key' > 'Create new key' and choose JSON")
        print(f"4. Save it into {keys_dir} as <project-id>.json")
        return False

    return True

def get_claude_config_path():
    """Get the Claude Desktop configuration file path"""
    system = platform.system()

    if system == "Darwin":  # macOS
        return Path.home() / "Library" / "Application Support" / "Claude" / "claude_desktop_config.json"
    elif system == "Windows":
        return Path(os.environ["APPDATA"]) / "Claude" / "claude_desktop_config.json"
    elif system == "Linux":
        return Path.home() / ".config" / "Claude" / "claude_desktop_config.json"
    else:
        return None

def build_server_config(location_projects, keys_dir):
    """Build the mcpServers entry that launches this server"""
    server_path = Path(__file__).resolve().parent / "cloud_tasks_mcp.py"
    return {
        "cloudtasks": {
            "command": sys.executable,
            "args": [str(server_path)],
            "env": {
                LOCATION_PROJECTS_ENV: location_projects,
                KEYS_DIR_ENV: str(keys_dir),
            }
        }
    }

def setup_claude_desktop(config, keys_dir):
    """Generate configuration for Claude Desktop"""
    print_header("Claude Desktop Configuration")

    config_path = get_claude_config_path()

    if not config_path:
        print_warning("Could not determine Claude Desktop config path for your system")
        print_info("Please manually add the configuration to Claude Desktop")
        return

    print_info(f"Claude config path: {config_path}")

    server_config = build_server_config(config.raw_value or "", keys_dir)

    print("\nAdd this to your Claude Desktop configuration:")
    print(Colors.OKCYAN + json.dumps(server_config, indent=2) + Colors.ENDC)

    if config_path.exists():
        print_warning(f"\nConfiguration file exists at: {config_path}")
        print_info("Please manually add the above configuration to the 'mcpServers' section")
    else:
        print_info("\nWould you like to create a new configuration file? (y/n): ", end="")
        if input().lower() == 'y':
            config_path.parent.mkdir(parents=True, exist_ok=True)
            full_config = {"mcpServers": server_config}
            with open(config_path, 'w') as f:
                json.dump(full_config, f, indent=2)
            print_success(f"Configuration saved to: {config_path}")

def main():
    """Main setup function"""
    print_header("Cloud Tasks MCP Server Setup")
    print("This script will help you set up the Cloud Tasks MCP Server\n")

    if not check_python_version():
        sys.exit(1)

    if not install_dependencies():
        print_warning("Continuing despite dependency installation issues...")

    config = RouterConfig.from_env()
    keys_dir = get_keys_dir()

    if not check_credentials(config, keys_dir):
        print_error("\nSetup incomplete: Missing service account keys")
        print_info("Please follow the instructions above and run setup again")
        sys.exit(1)

    setup_claude_desktop(config, keys_dir)

    print_header("Setup Complete!")

    print("Next steps:")
    print("1. Run 'cloud-tasks-mcp' to start the server")
    print("2. If using Claude Desktop, restart the app after adding configuration")
    print("3. In Claude, you can now ask things like:")
    print("   - 'List my Cloud Tasks queues'")
    print("   - 'Pause the email-delivery queue'")
    print("   - 'Show the tasks waiting in queue q1'")

    print_success("\nSetup completed successfully! 🎉")

if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\n\nSetup cancelled by user")
        sys.exit(0)
    except Exception as e:
        print_error(f"\nUnexpected error: {e}")
        sys.exit(1)
