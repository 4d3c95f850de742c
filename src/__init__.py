"""Study planner service packages."""
