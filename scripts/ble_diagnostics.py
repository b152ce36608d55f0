#!/usr/bin/env python3
"""
BLE connection diagnostics and troubleshooting tool for Muse v3 units.

Run after installing the package (``pip install -e .``).
"""

import asyncio
import logging
import platform
import subprocess
import sys

from bleak import BleakScanner

from muse_v3_receiver.acquisition import preset
from muse_v3_receiver.errors import MuseError
from muse_v3_receiver.session import MuseSession
from muse_v3_receiver.transport import DEVICE_NAME_PREFIX, MUSE_SERVICE, BleakTransport

# Configure logging for diagnostics tool
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",  # Simple format for user-friendly output
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


async def check_bluetooth_status() -> bool:
    """Check if Bluetooth is available and working."""
    logger.info("Checking Bluetooth status...")

    system = platform.system().lower()

    if system == "darwin":
        try:
            result = subprocess.run(
                ["system_profiler", "SPBluetoothDataType"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("Could not check Bluetooth status on macOS: %s", e)
            return True
        if "State: On" in result.stdout:
            logger.info("Bluetooth is enabled on macOS")
            return True
        logger.error("Bluetooth appears to be disabled on macOS")
        return False

    if system == "linux":
        try:
            result = subprocess.run(
                ["bluetoothctl", "show"], capture_output=True, text=True, timeout=10
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("Could not check Bluetooth status on Linux: %s", e)
            return True
        if "Powered: yes" in result.stdout:
            logger.info("Bluetooth is powered on Linux")
            return True
        logger.error("Bluetooth appears to be powered off on Linux")
        return False

    logger.warning("Bluetooth status check not implemented for %s", system)
    return True


async def scan_for_devices(duration: float = 10.0) -> list[str]:
    """Scan for nearby BLE devices and return the addresses of Muse units."""
    logger.info("Scanning for BLE devices for %.0fs...", duration)

    devices_adv = await BleakScanner.discover(timeout=duration, return_adv=True)
    if not devices_adv:
        logger.error("No BLE devices found")
        logger.info("Troubleshooting:")
        logger.info("   - Make sure the Muse unit is powered on")
        logger.info("   - Check that the device is advertising (not connected elsewhere)")
        logger.info("   - Move closer to the device")
        return []

    logger.info("Found %d BLE device(s):", len(devices_adv))
    muse_addresses = []
    for device, adv in devices_adv.values():
        name = device.name or adv.local_name or "Unknown"
        logger.info("   %s (%s) RSSI: %sdBm", name, device.address, adv.rssi)
        uuids = [u.lower() for u in adv.service_uuids or []]
        if name.startswith(DEVICE_NAME_PREFIX) or MUSE_SERVICE in uuids:
            muse_addresses.append(device.address)
            logger.info("      -> Muse device")

    if muse_addresses:
        logger.info("\nFound %d Muse device(s)", len(muse_addresses))
    else:
        logger.warning("\nNo device advertising as '%s*' or with the Muse service", DEVICE_NAME_PREFIX)
    return muse_addresses


async def test_connection(address: str) -> None:
    """Connect, read device information and receive a few records."""
    logger.info("\nTesting connection to %s...", address)

    try:
        async with MuseSession(BleakTransport(address)) as session:
            logger.info("Connected")
            logger.info("Battery: %d%%", await session.read_battery())
            firmware = await session.read_firmware()
            logger.info(
                "Firmware: bootloader %s, application %s",
                firmware.bootloader,
                firmware.application_str,
            )
            logger.info("State: %s", (await session.read_state()).name)
            logger.info("Capabilities: %s", await session.read_capabilities())

            logger.info("Testing data reception...")
            await session.start_streaming(preset("imu_timestamp"))
            count = 0
            start_time = asyncio.get_running_loop().time()
            async for record in session.telemetry():
                count += 1
                acc = record.accelerometer
                logger.info(
                    "Record %d: t=%s ax=%.1f ay=%.1f az=%.1f mg",
                    count,
                    record.timestamp,
                    acc.x if acc else float("nan"),
                    acc.y if acc else float("nan"),
                    acc.z if acc else float("nan"),
                )
                if count >= 5 or asyncio.get_running_loop().time() - start_time > 10:
                    break
            logger.info("Received %d records", count)
    except MuseError as e:
        logger.error("Connection test failed: %s", e)


async def main() -> None:
    """Run BLE diagnostics."""
    logger.info("Muse v3 BLE Diagnostics")
    logger.info("=" * 40)

    if not await check_bluetooth_status():
        logger.error("\nBluetooth issues detected. Please enable Bluetooth and try again.")
        return

    addresses = await scan_for_devices(duration=15.0)
    if addresses:
        await test_connection(addresses[0])

    logger.info("\nDiagnostics complete")
    logger.info("\nIf you're still having connection issues:")
    logger.info("   1. Restart the Muse unit")
    logger.info("   2. Move closer to reduce interference")
    logger.info("   3. Make sure no other host (phone app) holds the connection")
    logger.info("   4. Try 'muse-v3-receiver --info --log-level DEBUG'")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("\nDiagnostics cancelled by user")
    except Exception as e:
        logger.error("Diagnostics error: %s", e)
        sys.exit(1)
