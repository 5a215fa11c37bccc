"""footybets: social Premier League prediction game with gameweek settlement."""
