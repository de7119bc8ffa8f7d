"""Toolpath generation package."""

from .base import ArcSpec, MotionBuilder, MotionPlan, MotionSegment, MoveType

__all__ = ["ArcSpec", "MotionBuilder", "MotionPlan", "MotionSegment", "MoveType"]
