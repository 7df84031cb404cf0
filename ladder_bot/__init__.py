"""LadderBot: announces notable ladder battles and rank changes in a Showdown room."""
