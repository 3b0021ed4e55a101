"""Interactive CLI simulator — exercise the OTP sign-in flow without SMS."""

import asyncio
import logging

from otp_auth.config import settings
from otp_auth.errors import OtpError
from otp_auth.services.otp_service import build_otp_service

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)-8s | %(message)s")

    print(f"\n{BOLD}{'=' * 52}")
    print(f"  📱  {settings.app_name} — Sign-in Simulator")
    print(f"{'=' * 52}{RESET}\n")

    print(f"{DIM}Tip: Use 9876543210 or +91 98765-43210{RESET}")
    print(f"{DIM}     Commands: 'send', a 6-digit code, 'switch', 'quit'{RESET}")
    print(f"{DIM}     OTP codes are printed by the log gateway{RESET}\n")

    phone = input(f"{YELLOW}Enter phone number to simulate: {RESET}").strip() or "9876543210"
    print(f"{DIM}Simulating as {phone}{RESET}\n")

    # Always the log gateway, whatever the environment says
    service = build_otp_service(settings.model_copy(update={"sms_provider": "log"}))

    while True:
        try:
            user_input = input(f"{BLUE}{BOLD}You:{RESET} ").strip()
        except (KeyboardInterrupt, EOFError):
            print(f"\n{DIM}Goodbye!{RESET}")
            break

        if not user_input:
            continue

        if user_input.lower() == "quit":
            print(f"{DIM}Goodbye!{RESET}")
            break

        if user_input.lower() == "switch":
            phone = input(f"{YELLOW}New phone number: {RESET}").strip()
            print(f"{DIM}Switched to {phone}{RESET}\n")
            continue

        try:
            if user_input.lower() == "send":
                issued = await service.send_challenge(phone, "simulator")
                print(
                    f"{GREEN}{BOLD}Server:{RESET} Code sent to {issued.phone.masked()}, "
                    f"valid until {issued.expires_at:%H:%M:%S} UTC\n"
                )
            else:
                outcome = await service.verify_challenge(phone, user_input)
                colour = GREEN if outcome.success else RED
                print(f"{colour}{BOLD}Server:{RESET} {outcome.result.value}\n")
        except OtpError as exc:
            print(f"{RED}{BOLD}Server:{RESET} {type(exc).__name__}: {exc}\n")


if __name__ == "__main__":
    asyncio.run(main())
