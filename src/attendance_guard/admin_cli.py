"""
Attendance Guard Admin Utility
==============================
Configure the school location and manage enrollments from the shell.

Examples:
    attendance-guard-admin set-location -6.2001 106.8167 100 --ssid SMK-WIFI --ip-range 192.168.1.0/24
    attendance-guard-admin enroll u-1 abc123 u-1.jpg
    attendance-guard-admin reset u-1 --admin root
    attendance-guard-admin stats
"""

import argparse
import json
import logging
import sys
from typing import Optional, List

from .attendance_flow import AttendanceFlow
from .database.db_manager import DatabaseManager


def cmd_set_location(flow: AttendanceFlow, args) -> int:
    try:
        config_id = flow.db.set_active_location_config(
            reference_latitude=args.latitude,
            reference_longitude=args.longitude,
            radius_meters=args.radius,
            allowed_ssids=args.ssid,
            allowed_ip_ranges=args.ip_range,
            location_name=args.name
        )
    except ValueError as e:
        print(f"✗ {e}")
        return 1
    print(f"Active location set: {args.name} (id={config_id}, radius={args.radius}m)")
    if not args.ssid and not args.ip_range:
        print("Warning: no SSIDs or IP ranges configured, every network check will fail")
    return 0


def cmd_enroll(flow: AttendanceFlow, args) -> int:
    profile = flow.enroll(args.user_id, args.fingerprint_hash, args.reference_photo_url, args.credential_id)
    print(f"✓ Enrolled {profile.user_id}")
    return 0


def cmd_reset(flow: AttendanceFlow, args) -> int:
    if flow.reset_enrollment(args.user_id, admin_id=args.admin):
        print(f"✓ Enrollment reset for {args.user_id}")
        return 0
    print(f"✗ No enrollment for {args.user_id}")
    return 1


def cmd_stats(flow: AttendanceFlow, args) -> int:
    stats = flow.db.get_stats()
    policy = flow.db.get_active_location_policy()
    stats["active_location"] = policy.model_dump() if policy else None
    print(json.dumps(stats, indent=2, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Attendance Guard administration")
    parser.add_argument("--db", help="SQLite database path (default: ATTENDANCE_DB_PATH)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    location = subparsers.add_parser("set-location", help="Replace the active school location")
    location.add_argument("latitude", type=float)
    location.add_argument("longitude", type=float)
    location.add_argument("radius", type=float, help="Geofence radius in meters")
    location.add_argument("--ssid", action="append", default=[], help="Allowed WiFi SSID (repeatable)")
    location.add_argument("--ip-range", action="append", default=[],
                          help="Allowed IP range: CIDR, exact IP or prefix (repeatable)")
    location.add_argument("--name", default="School", help="Location name")
    location.set_defaults(func=cmd_set_location)

    enroll = subparsers.add_parser("enroll", help="Enroll or re-enroll a user")
    enroll.add_argument("user_id")
    enroll.add_argument("fingerprint_hash")
    enroll.add_argument("reference_photo_url", help="URL, file path or data URL of the reference photo")
    enroll.add_argument("--credential-id", default=None)
    enroll.set_defaults(func=cmd_enroll)

    reset = subparsers.add_parser("reset", help="Delete a user's enrollment")
    reset.add_argument("user_id")
    reset.add_argument("--admin", default="cli", help="Admin id recorded in the audit log")
    reset.set_defaults(func=cmd_reset)

    stats = subparsers.add_parser("stats", help="Show database statistics")
    stats.set_defaults(func=cmd_stats)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    db = DatabaseManager(args.db) if args.db else DatabaseManager()
    if not db.initialize():
        print(f"Error: could not open database {db.db_path}")
        return 1

    try:
        return args.func(AttendanceFlow(db), args)
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
