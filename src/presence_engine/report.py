"""Dashboard text report.

Renders one DashboardResult as a plain-text summary:
- Today's counters and all-time totals
- All users, online first
- Who is online right now
- Today's encounters (with place names when already cached)
- Activity trend table
- Emotion breakdown and recent activity feed
- Diagnostics (dropped records, unavailable views)
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from .aggregator import buckets_to_frame
from .engine import DashboardResult, Derived
from .geocoding import ReverseGeocoder, format_place
from .models import EncounterEvent
from .timeutils import dt_from_epoch_ms, tzinfo_from_name


class DashboardReportGenerator:
    """Generates text reports for the dashboard."""

    def __init__(self, config: Dict[str, Any], geocoder: Optional[ReverseGeocoder] = None):
        """Initialize report generator.

        Args:
            config: Configuration dictionary
            geocoder: Optional geocoder; only its cache is consulted
        """
        self.config = config
        self.geocoder = geocoder
        self.tz = tzinfo_from_name(config['timezone'])

    def _fmt_time(self, epoch_ms: int) -> str:
        return dt_from_epoch_ms(epoch_ms, self.tz).strftime('%Y-%m-%d %H:%M:%S')

    def _place(self, lat: float, lng: float) -> str:
        place = self.geocoder.peek(lat, lng) if self.geocoder is not None else None
        return format_place(place, lat, lng)

    @staticmethod
    def _unavailable(report: List[str], derived: Derived) -> bool:
        if derived.available:
            return False
        report.append(f"  UNAVAILABLE: {derived.unavailable_reason}")
        report.append("")
        return True

    def generate_report(self, result: DashboardResult, output_file: Optional[Path] = None) -> str:
        """Generate the dashboard report.

        Args:
            result: Engine output
            output_file: Where to write the report (not written if None)

        Returns:
            Report text
        """
        report = []

        # Header
        report.append("=" * 80)
        report.append("PRESENCE DASHBOARD")
        report.append("=" * 80)
        report.append(f"Reference time: {self._fmt_time(result.now)} ({self.config['timezone']})")
        report.append(f"Day window: {self._fmt_time(result.day[0])} to {self._fmt_time(result.day[1])}")
        report.append("")

        report.append("Parameters:")
        report.append(f"  - Liveness timeout: {self.config['liveness']['timeout_minutes']} minutes")
        report.append(f"  - Encounter time window: {self.config['encounters']['time_window_minutes']} minutes")
        report.append(f"  - Encounter distance: {self.config['encounters']['distance_meters']}m")
        report.append("")

        # Stats
        report.append("TODAY")
        report.append("-" * 80)
        if not self._unavailable(report, result.stats):
            stats = result.stats.value
            report.append(f"  Encounter population: {stats.encounters_today}")
            report.append(f"  Posts: {stats.posts_today}")
            report.append(f"  Emotion posts: {stats.emotion_posts_today}")
            report.append(f"  New users: {stats.new_users_today}")
            report.append("")
            report.append("ALL TIME")
            report.append("-" * 80)
            report.append(f"  Users: {stats.total_users}")
            report.append(f"  Posts: {stats.total_posts}")
            report.append(f"  Emotion posts: {stats.total_emotion_posts}")
            report.append(f"  Likes received: {stats.total_likes}")
            report.append(f"  Followers: {stats.total_followers}")
            report.append("")

        # Online
        report.append("ONLINE NOW")
        report.append("-" * 80)
        if not self._unavailable(report, result.liveness):
            liveness = result.liveness.value
            report.append(f"  Online: {liveness.online_count}  Offline: {liveness.offline_count}")
            for record in liveness.online:
                line = f"  {record.profile.display_name} (last seen {self._fmt_time(record.timestamp)})"
                if record.location is not None:
                    line += f" @ {self._place(*record.location)}"
                report.append(line)
            report.append("")

        # Directory
        report.append("ALL USERS")
        report.append("-" * 80)
        if not self._unavailable(report, result.users):
            users = result.users.value
            online_users = sum(1 for u in users if u.online)
            report.append(f"  Total: {len(users)}  Online: {online_users}")
            for user in users:
                if user.online:
                    line = f"  * {user.display_name} (online, {self._fmt_time(user.last_updated)})"
                    if user.location is not None:
                        line += f" @ {self._place(*user.location)}"
                else:
                    line = f"    {user.display_name}"
                report.append(line)
            report.append("")

        # Encounters
        report.append("TODAY'S ENCOUNTERS")
        report.append("-" * 80)
        if not self._unavailable(report, result.encounters):
            encounters = result.encounters.value
            report.append(f"  Total: {len(encounters)}")
            for event in encounters:
                report.append(self._encounter_line(event))
            hotspots = self._encounter_hotspots(encounters)
            if hotspots:
                report.append("")
                report.append("  Hotspots:")
                for spot in hotspots:
                    report.append(f"    {self._place(spot['lat'], spot['lng'])}: {spot['count']} encounters")
            report.append("")

        # Activity trend
        report.append(f"ACTIVITY ({result.activity_range.value})")
        report.append("-" * 80)
        if not self._unavailable(report, result.activity):
            frame = buckets_to_frame(result.activity.value)
            if not frame.empty:
                table = frame.drop(columns=['index', 'start_ms', 'end_ms']).set_index('label')
                report.extend("  " + line for line in table.to_string().splitlines())
            report.append("")

        # Emotions
        report.append("EMOTIONS")
        report.append("-" * 80)
        if not self._unavailable(report, result.emotions):
            for stat in result.emotions.value:
                report.append(f"  {stat.emotion}: {stat.count} ({stat.percentage:.1f}%)")
            report.append("")

        # Recent activity
        report.append("RECENT ACTIVITY")
        report.append("-" * 80)
        if not self._unavailable(report, result.recent):
            for item in result.recent.value:
                who = f" by {item.user_name}" if item.user_name else ""
                report.append(f"  [{self._fmt_time(item.timestamp)}] {item.title}{who}: {item.description}")
            report.append("")

        # Diagnostics
        dropped = {k: v for k, v in result.dropped.items() if v}
        if dropped:
            report.append("DIAGNOSTICS")
            report.append("-" * 80)
            for dataset, count in sorted(dropped.items()):
                report.append(f"  {dataset}: {count} records dropped (unparseable timestamp or id)")
            report.append("")

        report.append("=" * 80)

        report_text = '\n'.join(report)
        if output_file is not None:
            with open(output_file, 'w', encoding='utf-8') as f:
                f.write(report_text)
            print(f"\nReport saved to {output_file}")
        return report_text

    def _encounter_line(self, event: EncounterEvent) -> str:
        a, b = event.participants
        line = (f"  [{self._fmt_time(event.occurred_at)}] "
                f"{a.profile.display_name} x {b.profile.display_name}")
        if event.distance_m is not None and event.midpoint is not None:
            line += f" - {event.distance_m:.0f}m @ {self._place(*event.midpoint)}"
        return line

    @staticmethod
    def _encounter_hotspots(encounters: List[EncounterEvent], top: int = 5) -> List[Dict[str, Any]]:
        """Most frequent encounter midpoints, rounded to ~100 m."""
        located = [e.midpoint for e in encounters if e.midpoint is not None]
        if not located:
            return []

        df = pd.DataFrame(located, columns=['lat', 'lng']).round(3)
        counts = df.groupby(['lat', 'lng']).size().sort_values(ascending=False, kind='stable')
        return [
            {'lat': lat, 'lng': lng, 'count': int(count)}
            for (lat, lng), count in counts.head(top).items()
        ]
