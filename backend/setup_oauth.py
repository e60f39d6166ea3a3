"""
Google OAuth Setup Script
Run this once to authenticate and save the token for Google Drive exports.

Usage:
    python setup_oauth.py

After running, the token is saved to DRIVE_TOKEN_PATH
(default: credentials/oauth_token.pickle)
"""
import os

from dotenv import load_dotenv

load_dotenv()

from google_drive import TOKEN_PATH, GoogleDriveError, authorize_interactively


def main():
    print("=" * 50)
    print("Google Drive OAuth Setup")
    print("=" * 50)

    # Check if already authenticated
    if os.path.exists(TOKEN_PATH):
        response = input("\nToken already exists. Re-authenticate? (y/n): ")
        if response.lower() != 'y':
            print("Keeping existing token.")
            return

    print("\nStarting OAuth flow...")
    print("A browser window will open for Google login.")
    print("Sign in with the Google account whose Drive should receive the exports.\n")

    try:
        authorize_interactively()
    except GoogleDriveError as e:
        print(f"\nError: {e}")
        print("\nTo get these:")
        print("1. Go to https://console.cloud.google.com/apis/credentials")
        print("2. Create OAuth 2.0 Client ID (type: Desktop app)")
        print("3. Copy Client ID and Client Secret into .env")
        raise SystemExit(1)
    except Exception as e:
        print(f"\nError during OAuth flow: {e}")
        print("\nMake sure:")
        print("1. OAuth Client ID is set up as 'Desktop app' type")
        print("2. Google Drive API is enabled in your project")
        raise SystemExit(1)

    print(f"\nToken saved to: {TOKEN_PATH}")
    print("\n" + "=" * 50)
    print("SUCCESS! OAuth setup complete.")
    print("=" * 50)
    print("\nDrive exports now go to this Google account.")


if __name__ == '__main__':
    main()
