"""Login server, the broker that gate servers register with, and account lookup."""