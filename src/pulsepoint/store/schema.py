"""Database schema for PulsePoint."""

SCHEMA = """
CREATE TABLE IF NOT EXISTS tracked_subreddits (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,  -- lower-case, no r/ prefix
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- No foreign key to tracked_subreddits: runs outlive a deleted subreddit
CREATE TABLE IF NOT EXISTS scrape_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    subreddit_id INTEGER NOT NULL,
    subreddit_name TEXT NOT NULL,
    window_days INTEGER NOT NULL CHECK (window_days IN (1, 7, 30)),
    status TEXT NOT NULL DEFAULT 'running',  -- queued, running, completed, failed
    started_at TEXT NOT NULL,
    finished_at TEXT,
    error_message TEXT,
    stats TEXT NOT NULL DEFAULT '{}'  -- JSON counters
);

CREATE TABLE IF NOT EXISTS scrape_checkpoints (
    subreddit_id INTEGER NOT NULL,
    window_days INTEGER NOT NULL,
    last_after_cursor TEXT,
    last_post_created_utc INTEGER,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (subreddit_id, window_days)
);

CREATE TABLE IF NOT EXISTS reddit_posts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER NOT NULL,  -- latest run that touched the post
    subreddit_id INTEGER NOT NULL,
    external_id TEXT NOT NULL UNIQUE,
    created_utc INTEGER NOT NULL,
    title TEXT NOT NULL,
    body TEXT,
    author TEXT,
    permalink TEXT,
    url TEXT,
    score INTEGER NOT NULL DEFAULT 0,
    num_comments INTEGER NOT NULL DEFAULT 0,
    raw TEXT,  -- JSON snapshot
    FOREIGN KEY (run_id) REFERENCES scrape_runs(id)
);

CREATE TABLE IF NOT EXISTS reddit_comments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER NOT NULL,
    subreddit_id INTEGER NOT NULL,
    post_ref INTEGER NOT NULL,
    external_id TEXT NOT NULL UNIQUE,
    external_post_id TEXT NOT NULL,
    parent_external_id TEXT,
    created_utc INTEGER NOT NULL,
    author TEXT,
    body TEXT NOT NULL,
    score INTEGER NOT NULL DEFAULT 0,
    raw TEXT,  -- JSON snapshot
    FOREIGN KEY (run_id) REFERENCES scrape_runs(id),
    FOREIGN KEY (post_ref) REFERENCES reddit_posts(id)
);

CREATE TABLE IF NOT EXISTS problem_statements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER NOT NULL,
    subreddit_id INTEGER NOT NULL,
    source_type TEXT NOT NULL CHECK (source_type IN ('post', 'comment')),
    source_ref INTEGER NOT NULL,  -- reddit_posts.id or reddit_comments.id
    statement TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (run_id) REFERENCES scrape_runs(id)
);

CREATE TABLE IF NOT EXISTS problem_clusters (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER NOT NULL,
    subreddit_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    summary TEXT,
    frequency INTEGER NOT NULL DEFAULT 0 CHECK (frequency >= 0),
    severity TEXT NOT NULL CHECK (severity IN ('low', 'medium', 'high')),
    evidence TEXT NOT NULL DEFAULT '[]',  -- JSON array, at most 5 excerpts
    created_at TEXT NOT NULL,
    FOREIGN KEY (run_id) REFERENCES scrape_runs(id)
);

CREATE TABLE IF NOT EXISTS generated_ideas (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER NOT NULL,
    subreddit_id INTEGER NOT NULL,
    cluster_ref INTEGER NOT NULL UNIQUE,  -- one idea per cluster
    title TEXT NOT NULL,
    idea TEXT NOT NULL,  -- JSON BusinessIdea
    score INTEGER NOT NULL DEFAULT 0 CHECK (score >= 0),
    created_at TEXT NOT NULL,
    FOREIGN KEY (run_id) REFERENCES scrape_runs(id),
    FOREIGN KEY (cluster_ref) REFERENCES problem_clusters(id)
);

CREATE INDEX IF NOT EXISTS idx_runs_started ON scrape_runs(started_at DESC);
CREATE INDEX IF NOT EXISTS idx_posts_run_id ON reddit_posts(run_id);
CREATE INDEX IF NOT EXISTS idx_comments_run_id ON reddit_comments(run_id);
CREATE INDEX IF NOT EXISTS idx_problems_run_id ON problem_statements(run_id);
CREATE INDEX IF NOT EXISTS idx_clusters_run_id ON problem_clusters(run_id);
CREATE INDEX IF NOT EXISTS idx_ideas_run_id ON generated_ideas(run_id);
CREATE INDEX IF NOT EXISTS idx_ideas_score ON generated_ideas(score DESC);
"""
