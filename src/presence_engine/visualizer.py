"""Chart rendering for dashboard results.

Creates:
1. Activity trend chart (one line per category, shared bucket edges)
2. Stats bar chart (today's counters next to all-time totals)
"""

from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402

from .aggregator import CATEGORIES, buckets_to_frame  # noqa: E402
from .models import ActivityBucket, ActivityStats  # noqa: E402

SERIES_STYLE = {
    'posts': ('Posts', '#FF9800'),
    'emotion_posts': ('Emotion posts', '#E91E63'),
    'new_users': ('New users', '#4CAF50'),
    'online': ('Online', '#2196F3'),
}


class ActivityVisualizer:
    """Creates dashboard charts."""

    def __init__(self, config: Dict[str, Any]):
        """Initialize visualizer with configuration.

        Args:
            config: Configuration dictionary
        """
        self.config = config

    def create_activity_chart(
        self,
        buckets: Sequence[ActivityBucket],
        output_file: Path,
        title: str = "Activity",
        categories: Sequence[str] = CATEGORIES,
    ) -> None:
        """Line chart of per-bucket counts, oldest bucket on the left.

        Args:
            buckets: Output of aggregate_activity
            output_file: Output PNG path
            title: Chart title
            categories: Series to draw
        """
        frame = buckets_to_frame(buckets)
        if frame.empty:
            print("No activity to visualize")
            return

        fig, ax = plt.subplots(figsize=(12, 4))
        for name in categories:
            if name not in frame.columns:
                continue
            label, color = SERIES_STYLE.get(name, (name, None))
            ax.plot(frame['index'], frame[name], label=label, color=color, linewidth=2, marker='o', markersize=3)

        y_max = max([int(frame[c].max()) for c in categories if c in frame.columns] or [0])
        ax.set_ylim(0, max(1, int(y_max * 1.1 + 0.999)))
        ax.set_xticks(frame['index'])
        ax.set_xticklabels(frame['label'], rotation=45, fontsize=8)
        ax.set_title(title, fontsize=12)
        ax.grid(True, linestyle='--', alpha=0.4)
        ax.legend(loc='upper left')

        plt.tight_layout()
        plt.savefig(output_file, dpi=150, bbox_inches='tight')
        plt.close(fig)

        print(f"Activity chart saved to {output_file}")

    def create_stats_bar_chart(
        self,
        stats: ActivityStats,
        output_file: Path,
        online_count: Optional[int] = None,
    ) -> None:
        """Bar chart of the scalar counters."""
        bars = []
        if online_count is not None:
            bars.append(('Online', online_count))
        bars.extend([
            ('Users', stats.total_users),
            ('New', stats.new_users_today),
            ('Posts', stats.posts_today),
            ('Emotions', stats.emotion_posts_today),
            ('Likes', stats.total_likes),
            ('Followers', stats.total_followers),
        ])
        labels = [name for name, _ in bars]
        values = [value for _, value in bars]
        colors = ['#FFD54F', '#FFB74D', '#FFA726', '#FF9800', '#FF8F00', '#FF6F00', '#F57C00'][-len(bars):]

        fig, ax = plt.subplots(figsize=(8, 3))
        ax.bar(labels, values, color=colors)
        for i, value in enumerate(values):
            ax.annotate(str(value), xy=(i, value), ha='center', va='bottom', fontsize=8)
        ax.grid(True, axis='y', linestyle='--', alpha=0.4)

        plt.tight_layout()
        plt.savefig(output_file, dpi=150, bbox_inches='tight')
        plt.close(fig)

        print(f"Stats chart saved to {output_file}")
